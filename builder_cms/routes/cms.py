"""
CMS API routes with password authentication.
Project management and project gallery editing; every endpoint requires the
X-CMS-Password header.

Each project gallery keeps exactly one feature image while it has any images,
and the project's main image mirrors that feature image.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from typing import Optional, List
import logging

from builder_cms.config import settings
from builder_cms.database import get_db
from builder_cms.gallery.reconciler import ensure_feature, feature_image, next_display_order, set_feature
from builder_cms.models import Project, ProjectGalleryImage
from builder_cms.schemas import (
    ImageReorderRequest,
    ProjectCreate,
    ProjectGalleryImageCreate,
    ProjectGalleryImageResponse,
    ProjectGalleryImageUpdate,
    ProjectResponse,
    ProjectUpdate,
)
from builder_cms.services.cloudinary_service import delete_image_by_url
from builder_cms.utils.auth import verify_cms_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cms", tags=["CMS"])


def _clean_caption(caption: Optional[str]) -> Optional[str]:
    return caption.strip() if caption and caption.strip() else None


async def _get_project_or_404(db: AsyncSession, project_id: int) -> Project:
    project = await db.get(Project, project_id)
    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Project not found", "detail": f"Project ID {project_id} does not exist"}
        )
    return project


async def _get_image_or_404(db: AsyncSession, image_id: int) -> ProjectGalleryImage:
    image = await db.get(ProjectGalleryImage, image_id)
    if image is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Image not found", "detail": f"Image ID {image_id} does not exist"}
        )
    return image


async def _load_gallery(db: AsyncSession, project_id: int) -> List[ProjectGalleryImage]:
    result = await db.execute(
        select(ProjectGalleryImage)
        .where(ProjectGalleryImage.project_id == project_id)
        .order_by(ProjectGalleryImage.display_order.asc(), ProjectGalleryImage.id.asc())
    )
    return list(result.scalars().all())


async def _delete_asset(url: Optional[str]) -> None:
    """Delete a stored file; failures are logged and never block the database change."""
    if not url:
        return
    try:
        await delete_image_by_url(url)
    except Exception as e:
        logger.error(f"Failed to delete file from Cloudinary ({url}): {str(e)}", exc_info=True)


# Projects

@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectCreate,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Create a project.

    Raises:
        HTTPException: 500 if save fails
    """
    try:
        project = Project(**project_data.model_dump())
        db.add(project)
        await db.commit()
        await db.refresh(project)

        logger.info(f"Created project: ID {project.id} ({project.title})")

        return ProjectResponse.model_validate(project)

    except Exception as e:
        logger.error(f"Error creating project: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to create project", "detail": str(e)}
        )


@router.put("/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: int,
    project_update: ProjectUpdate,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Update project fields; only fields present in the body change.

    Raises:
        HTTPException: 404 if project not found, 500 if update fails
    """
    try:
        project = await _get_project_or_404(db, project_id)

        for field, value in project_update.model_dump(exclude_unset=True).items():
            setattr(project, field, value)

        await db.commit()
        await db.refresh(project)

        logger.info(f"Updated project: ID {project_id}")

        return ProjectResponse.model_validate(project)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating project {project_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to update project", "detail": str(e)}
        )


@router.delete("/projects/{project_id}")
async def delete_project(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Delete a project with its gallery.
    Stored files are deleted best-effort before the rows.

    Raises:
        HTTPException: 404 if project not found, 500 if deletion fails
    """
    try:
        project = await _get_project_or_404(db, project_id)
        images = await _load_gallery(db, project_id)

        urls = [img.image_url for img in images]
        if project.image and project.image not in urls:
            urls.append(project.image)
        for url in urls:
            await _delete_asset(url)

        await db.execute(
            delete(ProjectGalleryImage).where(ProjectGalleryImage.project_id == project_id)
        )
        await db.delete(project)
        await db.commit()

        logger.info(f"Deleted project {project_id} with {len(images)} gallery image(s)")

        return {
            "message": "Project deleted successfully",
            "project_id": project_id,
            "deleted_images": len(images),
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting project {project_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to delete project", "detail": str(e)}
        )


# Project gallery

@router.get("/projects/{project_id}/gallery", response_model=List[ProjectGalleryImageResponse])
async def get_cms_project_gallery(
    project_id: int,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Get a project's gallery for the CMS editor, ordered by display_order.

    Raises:
        HTTPException: 404 if project not found, 500 if database query fails
    """
    try:
        await _get_project_or_404(db, project_id)
        images = await _load_gallery(db, project_id)

        logger.info(f"Retrieved {len(images)} gallery images for project {project_id} (CMS)")

        return [ProjectGalleryImageResponse.model_validate(img) for img in images]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching CMS gallery for project {project_id}: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to retrieve gallery images", "detail": str(e)}
        )


@router.post(
    "/projects/{project_id}/gallery",
    response_model=ProjectGalleryImageResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_project_gallery_image(
    project_id: int,
    image_data: ProjectGalleryImageCreate,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Add an already uploaded image to a project gallery.

    A missing display_order appends the image after the current last one.
    With is_feature the image replaces the current feature image; the first image
    of a gallery always becomes the feature image.

    Raises:
        HTTPException: 404 if project not found, 400 if the gallery is full,
            500 if save fails
    """
    try:
        project = await _get_project_or_404(db, project_id)
        images = await _load_gallery(db, project_id)

        if len(images) >= settings.GALLERY_MAX_IMAGES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "Gallery limit reached",
                    "detail": f"Maximum {settings.GALLERY_MAX_IMAGES} images allowed per project"
                }
            )

        display_order = image_data.display_order
        if display_order is None:
            display_order = next_display_order(images, ())

        new_image = ProjectGalleryImage(
            project_id=project_id,
            image_url=image_data.image_url,
            caption=_clean_caption(image_data.caption),
            display_order=display_order,
            is_feature=image_data.is_feature,
        )
        db.add(new_image)
        await db.flush()

        gallery = images + [new_image]
        if image_data.is_feature:
            set_feature(new_image.id, gallery, ())
        else:
            ensure_feature(gallery)
        project.image = feature_image(gallery).image_url

        await db.commit()
        await db.refresh(new_image)

        logger.info(
            f"Added gallery image to project {project_id}: ID {new_image.id}, "
            f"display_order={new_image.display_order}, is_feature={new_image.is_feature}"
        )

        return ProjectGalleryImageResponse.model_validate(new_image)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error adding gallery image to project {project_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to add gallery image", "detail": str(e)}
        )


@router.put("/projects/{project_id}/gallery/reorder")
async def reorder_project_gallery(
    project_id: int,
    request: ImageReorderRequest,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Reorder a project gallery.

    Listed images come first in the given order, the rest keep their relative
    order after them. display_order is renumbered from 1.

    Raises:
        HTTPException: 400 if no IDs, 404 if project or images not found,
            500 if update fails
    """
    try:
        image_ids = request.image_ids

        if not image_ids:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "No image IDs provided", "detail": "At least one image ID is required"}
            )

        await _get_project_or_404(db, project_id)
        images = await _load_gallery(db, project_id)
        by_id = {img.id: img for img in images}

        missing_ids = [image_id for image_id in image_ids if image_id not in by_id]
        if missing_ids:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "error": "Images not found",
                    "detail": f"Image IDs not found in project {project_id}: {missing_ids}"
                }
            )

        reordered_ids = set(image_ids)
        final_order = [by_id[image_id] for image_id in image_ids]
        final_order.extend(img for img in images if img.id not in reordered_ids)

        for position, image in enumerate(final_order, start=1):
            image.display_order = position

        await db.commit()

        logger.info(f"Reordered {len(image_ids)} images in project {project_id}")

        return {
            "message": f"Successfully reordered {len(image_ids)} images",
            "count": len(image_ids)
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error reordering gallery of project {project_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to reorder gallery images", "detail": str(e)}
        )


@router.put(
    "/projects/{project_id}/gallery/{image_id}/set-feature",
    response_model=ProjectGalleryImageResponse
)
async def set_project_feature_image(
    project_id: int,
    image_id: int,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Make an image the project's feature image and main image.
    Every other image of the project loses the flag.

    Raises:
        HTTPException: 404 if project or image not found (or image belongs to
            another project), 500 if update fails
    """
    try:
        project = await _get_project_or_404(db, project_id)
        image = await _get_image_or_404(db, image_id)
        if image.project_id != project_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"error": "Image not found", "detail": f"Image ID {image_id} is not in project {project_id}"}
            )

        images = await _load_gallery(db, project_id)
        set_feature(image_id, images, ())
        project.image = image.image_url

        await db.commit()

        logger.info(f"Set feature image of project {project_id}: ID {image_id}")

        return ProjectGalleryImageResponse.model_validate(image)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error setting feature image {image_id} of project {project_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to set feature image", "detail": str(e)}
        )


@router.put("/projects/gallery/{image_id}", response_model=ProjectGalleryImageResponse)
async def update_project_gallery_image(
    image_id: int,
    image_update: ProjectGalleryImageUpdate,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Update caption and/or display order of a gallery image.
    Sending caption as null clears it; omitting it leaves it unchanged.

    Raises:
        HTTPException: 404 if image not found, 500 if update fails
    """
    try:
        image = await _get_image_or_404(db, image_id)

        if "caption" in image_update.model_fields_set:
            image.caption = _clean_caption(image_update.caption)
        if image_update.display_order is not None:
            image.display_order = image_update.display_order

        await db.commit()
        await db.refresh(image)

        logger.info(f"Updated gallery image: ID {image_id}")

        return ProjectGalleryImageResponse.model_validate(image)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating gallery image {image_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to update gallery image", "detail": str(e)}
        )


@router.delete("/projects/gallery/{image_id}")
async def delete_project_gallery_image(
    image_id: int,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Delete a gallery image and its stored file.

    Removing the feature image promotes the first remaining image by display
    order, and the project's main image follows it.

    Raises:
        HTTPException: 404 if image not found, 500 if deletion fails
    """
    try:
        image = await _get_image_or_404(db, image_id)
        project_id = image.project_id
        was_feature = image.is_feature

        # Continue with database deletion even if Cloudinary deletion fails
        await _delete_asset(image.image_url)

        await db.delete(image)
        await db.flush()

        promoted_id = None
        if was_feature:
            project = await db.get(Project, project_id)
            remaining = await _load_gallery(db, project_id)
            promoted = ensure_feature(remaining)
            promoted_id = promoted.id if promoted is not None else None
            if project is not None:
                project.image = promoted.image_url if promoted is not None else None
            logger.info(f"Feature image {image_id} deleted, promoted image {promoted_id}")

        await db.commit()

        logger.info(f"Successfully deleted gallery image: ID {image_id}")

        return {
            "message": "Image deleted successfully",
            "image_id": image_id,
            "promoted_image_id": promoted_id,
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting gallery image {image_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to delete gallery image", "detail": str(e)}
        )
