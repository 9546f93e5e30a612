"""
CMS file routes: image upload and editing-session file bookkeeping.

Uploads are tracked per editing session. Saving a gallery commits the session's
files; cancelling cleans up whatever was uploaded but never saved.
"""
from fastapi import APIRouter, Depends, HTTPException, status, UploadFile, File, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from builder_cms.config import settings
from builder_cms.database import get_db
from builder_cms.schemas import (
    CleanupFilesRequest,
    CleanupFilesResponse,
    CommitFilesRequest,
    TrackFileRequest,
    UploadResponse,
)
from builder_cms.services import file_manager
from builder_cms.services.cloudinary_service import upload_image
from builder_cms.utils.auth import verify_cms_password
from builder_cms.utils.image_converter import convert_to_webp, get_image_info
from builder_cms.utils.rate_limit import limiter, RATE_LIMITS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cms", tags=["CMS files"])


async def _prepare_upload(filename: str, content: bytes) -> bytes:
    """Convert to WebP when that makes the file smaller, otherwise keep the original."""
    converted_content, conversion_success = await convert_to_webp(content, skip_if_webp=True)

    if not conversion_success:
        logger.warning(f"WebP conversion failed for {filename}, uploading original format")
        return content

    if len(converted_content) < len(content):
        logger.info(f"Converted {filename} to WebP: {len(content):,} bytes -> {len(converted_content):,} bytes")
        return converted_content

    logger.debug(f"WebP conversion did not reduce size for {filename}, using original")
    return content


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["upload"])
async def upload_file(
    request: Request,
    session_id: str = Query(..., min_length=1, description="Editing session the upload belongs to"),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Upload one project image and track it for the editing session.

    Raises:
        HTTPException: 400 if the file is not an image, 500 if upload fails
    """
    filename = file.filename or "upload"
    try:
        if not file.content_type or not file.content_type.startswith("image/"):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "Invalid file type", "detail": f"File '{filename}' is not a valid image file"}
            )

        content = await file.read()
        if not content or get_image_info(content) is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": "Invalid image", "detail": f"File '{filename}' could not be read as an image"}
            )

        content = await _prepare_upload(filename, content)

        logger.info(f"Uploading image to Cloudinary: {filename} (session {session_id})")
        cloudinary_result = await upload_image(content, folder=settings.CLOUDINARY_FOLDER)
        url = cloudinary_result["url"]

        await file_manager.track_upload(db, url, session_id, filename=filename)
        await db.commit()

        logger.info(f"Uploaded {filename}: {url}")

        return UploadResponse(url=url, filename=filename, session_id=session_id)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error uploading {filename}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to upload image", "detail": str(e)}
        )


@router.post("/files/track")
async def track_file(
    track_request: TrackFileRequest,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Track a file uploaded outside POST /cms/upload for an editing session.

    Raises:
        HTTPException: 500 if save fails
    """
    try:
        await file_manager.track_upload(
            db, track_request.file_url, track_request.session_id, filename=track_request.filename
        )
        await db.commit()

        return {
            "success": True,
            "message": "File tracked",
            "file_url": track_request.file_url,
        }

    except Exception as e:
        logger.error(f"Error tracking file {track_request.file_url}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to track file", "detail": str(e)}
        )


@router.post("/files/commit")
async def commit_files(
    commit_request: CommitFilesRequest,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Commit a session's files so cleanup never deletes them.

    Raises:
        HTTPException: 500 if update fails
    """
    try:
        committed = await file_manager.commit_files(
            db, commit_request.session_id, commit_request.file_urls
        )
        await db.commit()

        return {
            "success": True,
            "message": f"Committed {len(committed)} file(s)",
            "files": committed,
        }

    except Exception as e:
        logger.error(f"Error committing files for session {commit_request.session_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to commit files", "detail": str(e)}
        )


@router.post("/files/cleanup", response_model=CleanupFilesResponse)
@limiter.limit(RATE_LIMITS["cleanup"])
async def cleanup_files(
    request: Request,
    cleanup_request: CleanupFilesRequest,
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Delete files uploaded during a session that were never saved.
    Files referenced by a project or gallery row are preserved.

    Raises:
        HTTPException: 400 if neither session_id nor file_urls is given,
            500 if cleanup fails
    """
    if not cleanup_request.session_id and cleanup_request.file_urls is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Nothing to clean up", "detail": "session_id or file_urls is required"}
        )

    try:
        result = await file_manager.cleanup_files(
            db,
            session_id=cleanup_request.session_id,
            urls=cleanup_request.file_urls,
            preserve_urls=cleanup_request.preserve_urls,
        )
        await db.commit()

        return CleanupFilesResponse(
            success=not result["failed_files"],
            message=(
                f"Deleted {len(result['deleted_files'])} file(s), "
                f"preserved {len(result['preserved_files'])}, "
                f"failed {len(result['failed_files'])}"
            ),
            **result,
        )

    except Exception as e:
        logger.error(f"Error cleaning up files for session {cleanup_request.session_id}: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to clean up files", "detail": str(e)}
        )


@router.post("/files/cleanup-stale", response_model=CleanupFilesResponse)
async def cleanup_stale_files(
    max_age_seconds: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    authenticated: bool = Depends(verify_cms_password)
):
    """
    Clean up uncommitted uploads older than max_age_seconds
    (default: settings.STALE_UPLOAD_MAX_AGE_SECONDS), from any session.

    Raises:
        HTTPException: 500 if cleanup fails
    """
    max_age = settings.STALE_UPLOAD_MAX_AGE_SECONDS if max_age_seconds is None else max_age_seconds
    try:
        result = await file_manager.cleanup_stale_uploads(db, max_age)
        await db.commit()

        return CleanupFilesResponse(
            success=not result["failed_files"],
            message=f"Deleted {len(result['deleted_files'])} stale file(s)",
            **result,
        )

    except Exception as e:
        logger.error(f"Error cleaning up stale uploads: {str(e)}", exc_info=True)
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Failed to clean up stale files", "detail": str(e)}
        )
