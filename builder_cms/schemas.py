"""
Pydantic schemas for request and response data validation.
Defines data structures for API endpoints with automatic validation and serialization.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import Optional, List


class ProjectBase(BaseModel):
    title: str = Field(min_length=1)
    category: str = Field(min_length=1)
    description: str = ""
    image: Optional[str] = None
    featured: bool = False


class ProjectCreate(ProjectBase):
    """
    Request schema for creating projects.
    Used by POST /api/cms/projects endpoint.
    """


class ProjectUpdate(BaseModel):
    """
    Request schema for partial project updates.
    Used by PUT /api/cms/projects/{id} endpoint.
    """
    title: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    featured: Optional[bool] = None


class ProjectResponse(ProjectBase):
    """Response schema for project data."""
    id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectGalleryImageResponse(BaseModel):
    """
    Response schema for project gallery image data.
    Used by GET /api/projects/{project_id}/gallery and the CMS gallery endpoints.
    """
    id: int
    project_id: int
    image_url: str
    caption: Optional[str] = None
    display_order: int
    is_feature: bool
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,  # Enable conversion from SQLAlchemy models
    )


class ProjectGalleryImageCreate(BaseModel):
    """
    Request schema for adding an image to a project gallery.
    Used by POST /api/cms/projects/{project_id}/gallery endpoint.
    project_id in the body is informational; the path parameter wins.
    """
    project_id: Optional[int] = None
    image_url: str = Field(min_length=1)
    caption: Optional[str] = None
    display_order: Optional[int] = Field(default=None, ge=0)
    is_feature: bool = False


class ProjectGalleryImageUpdate(BaseModel):
    """
    Request schema for updating gallery image caption and/or display order.
    Used by PUT /api/cms/projects/gallery/{image_id} endpoint.
    """
    caption: Optional[str] = None
    display_order: Optional[int] = Field(default=None, ge=0)


class ImageReorderRequest(BaseModel):
    """
    Request schema for reordering a project gallery.
    Contains array of image IDs in the desired display order.
    """
    image_ids: list[int]

    @field_validator('image_ids')
    @classmethod
    def validate_unique_ids(cls, v):
        if len(v) != len(set(v)):
            raise ValueError('Duplicate image IDs are not allowed')
        return v


class UploadResponse(BaseModel):
    """Response of POST /api/cms/upload."""
    url: str
    filename: str
    session_id: str


class TrackFileRequest(BaseModel):
    file_url: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    filename: Optional[str] = None


class CommitFilesRequest(BaseModel):
    session_id: str = Field(min_length=1)
    file_urls: Optional[List[str]] = None


class CleanupFilesRequest(BaseModel):
    """
    Request schema for POST /api/cms/files/cleanup.
    At least one of session_id or file_urls is required.
    """
    session_id: Optional[str] = None
    file_urls: Optional[List[str]] = None
    preserve_urls: List[str] = []


class CleanupFilesResponse(BaseModel):
    success: bool = True
    message: str
    deleted_files: List[str] = []
    failed_files: List[str] = []
    preserved_files: List[str] = []
