"""
Public routes for projects and their galleries.
Read-only endpoints used by the website frontend.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import List
import logging

from builder_cms.database import get_db
from builder_cms.models import Project, ProjectGalleryImage
from builder_cms.schemas import ProjectResponse, ProjectGalleryImageResponse

logger = logging.getLogger(__name__)

# Create router instance
router = APIRouter()


@router.get("/projects", response_model=List[ProjectResponse])
async def get_projects(db: AsyncSession = Depends(get_db)):
    """
    Get all projects, featured first, then newest first.

    Raises:
        HTTPException: 500 if database query fails
    """
    try:
        result = await db.execute(
            select(Project).order_by(Project.featured.desc(), Project.id.desc())
        )
        projects = result.scalars().all()

        logger.info(f"Retrieved {len(projects)} projects")

        return [ProjectResponse.model_validate(p) for p in projects]

    except Exception as e:
        logger.error(f"Failed to retrieve projects: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to retrieve projects", "detail": str(e)}
        )


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: int, db: AsyncSession = Depends(get_db)):
    """
    Get a single project.

    Raises:
        HTTPException: 404 if project not found, 500 if database query fails
    """
    try:
        project = await db.get(Project, project_id)
        if project is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"error": "Project not found", "detail": f"Project ID {project_id} does not exist"}
            )
        return ProjectResponse.model_validate(project)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to retrieve project {project_id}: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to retrieve project", "detail": str(e)}
        )


@router.get("/projects/{project_id}/gallery", response_model=List[ProjectGalleryImageResponse])
async def get_project_gallery(project_id: int, db: AsyncSession = Depends(get_db)):
    """
    Get a project's gallery images ordered by display_order.
    An unknown project simply has an empty gallery.

    Raises:
        HTTPException: 400 if project_id is not positive, 500 if database query fails
    """
    try:
        if project_id <= 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "Invalid project ID", "detail": "Project ID must be a positive integer"}
            )

        result = await db.execute(
            select(ProjectGalleryImage)
            .where(ProjectGalleryImage.project_id == project_id)
            .order_by(ProjectGalleryImage.display_order.asc(), ProjectGalleryImage.id.asc())
        )
        images = result.scalars().all()

        logger.info(f"Retrieved {len(images)} gallery images for project {project_id}")

        return [ProjectGalleryImageResponse.model_validate(img) for img in images]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to retrieve gallery for project {project_id}: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to retrieve project gallery", "detail": str(e)}
        )
