"""
SQLAlchemy models for the application.
All database models inherit from Base (declarative base).
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func
from builder_cms.database import Base


class Project(Base):
    """
    Portfolio project.
    `image` mirrors the URL of the gallery's feature image.
    """
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    category = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    image = Column(String, nullable=True)
    featured = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ProjectGalleryImage(Base):
    """
    Gallery image of a project.
    At most one image per project has is_feature set.
    """
    __tablename__ = "project_gallery"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    image_url = Column(String, nullable=False)
    caption = Column(String, nullable=True)
    display_order = Column(Integer, nullable=False, default=0, index=True)
    is_feature = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class TrackedUpload(Base):
    """
    File uploaded during an editing session.
    Stays 'pending' until the session commits it; pending files may be cleaned up.
    """
    __tablename__ = "tracked_uploads"

    id = Column(Integer, primary_key=True, index=True)
    url = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=False, index=True)
    filename = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
