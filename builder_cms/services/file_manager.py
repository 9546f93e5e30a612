"""
Server-side bookkeeping for files uploaded during gallery editing sessions.

Every upload is recorded as a pending TrackedUpload. Saving a gallery commits the
session's files; cancelling cleans them up. Cleanup never deletes a file that a
project or gallery row still references.
"""
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
import logging

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from builder_cms.models import Project, ProjectGalleryImage, TrackedUpload
from builder_cms.services.cloudinary_service import delete_image_by_url

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_COMMITTED = "committed"


async def track_upload(
    db: AsyncSession,
    url: str,
    session_id: str,
    filename: Optional[str] = None,
) -> TrackedUpload:
    """
    Record a file as uploaded by a session.
    Tracking the same URL twice for one session returns the existing row.
    """
    result = await db.execute(
        select(TrackedUpload).where(
            TrackedUpload.url == url,
            TrackedUpload.session_id == session_id,
        )
    )
    existing = result.scalar_one_or_none()
    if existing is not None:
        logger.debug(f"File already tracked for session {session_id}: {url}")
        return existing

    tracked = TrackedUpload(url=url, session_id=session_id, filename=filename, status=STATUS_PENDING)
    db.add(tracked)
    await db.flush()
    logger.info(f"Tracking file for session {session_id}: {url}")
    return tracked


async def commit_files(
    db: AsyncSession,
    session_id: str,
    urls: Optional[Iterable[str]] = None,
) -> list[str]:
    """
    Mark a session's pending files as committed so cleanup leaves them alone.

    Args:
        db: Database session
        session_id: Editing session
        urls: Only commit these URLs (default: every pending file of the session)

    Returns:
        list[str]: URLs that moved from pending to committed
    """
    query = select(TrackedUpload).where(
        TrackedUpload.session_id == session_id,
        TrackedUpload.status == STATUS_PENDING,
    )
    if urls is not None:
        query = query.where(TrackedUpload.url.in_(list(urls)))

    result = await db.execute(query)
    rows = result.scalars().all()
    for row in rows:
        row.status = STATUS_COMMITTED
    await db.flush()

    committed = [row.url for row in rows]
    logger.info(f"Committed {len(committed)} file(s) for session {session_id}")
    return committed


async def get_referenced_urls(db: AsyncSession, urls: Iterable[str]) -> set[str]:
    """Return the subset of urls used by a project main image or a gallery row."""
    urls = list(urls)
    if not urls:
        return set()

    referenced: set[str] = set()
    project_result = await db.execute(select(Project.image).where(Project.image.in_(urls)))
    referenced.update(project_result.scalars().all())
    gallery_result = await db.execute(
        select(ProjectGalleryImage.image_url).where(ProjectGalleryImage.image_url.in_(urls))
    )
    referenced.update(gallery_result.scalars().all())
    return referenced


async def cleanup_files(
    db: AsyncSession,
    session_id: Optional[str] = None,
    urls: Optional[Iterable[str]] = None,
    preserve_urls: Iterable[str] = (),
) -> dict:
    """
    Delete uploaded files that were never saved to a gallery.

    Candidates are the given urls, or else every pending file of the session.
    Referenced and explicitly preserved URLs are skipped and marked committed.
    A failed deletion keeps its tracking row so a later cleanup can retry.

    Returns:
        dict: deleted_files, failed_files and preserved_files
    """
    if urls is not None:
        candidates = list(dict.fromkeys(urls))
    elif session_id:
        result = await db.execute(
            select(TrackedUpload.url).where(
                TrackedUpload.session_id == session_id,
                TrackedUpload.status == STATUS_PENDING,
            )
        )
        candidates = list(dict.fromkeys(result.scalars().all()))
    else:
        raise ValueError("session_id or urls is required")

    keep = set(preserve_urls) | await get_referenced_urls(db, candidates)

    deleted: list[str] = []
    failed: list[str] = []
    preserved: list[str] = []
    for url in candidates:
        if url in keep:
            preserved.append(url)
            continue
        try:
            if await delete_image_by_url(url):
                deleted.append(url)
            else:
                failed.append(url)
        except Exception as e:
            logger.error(f"Failed to delete file {url}: {str(e)}", exc_info=True)
            failed.append(url)

    if preserved:
        await db.execute(
            update(TrackedUpload)
            .where(TrackedUpload.url.in_(preserved))
            .values(status=STATUS_COMMITTED)
        )
    if deleted:
        await db.execute(delete(TrackedUpload).where(TrackedUpload.url.in_(deleted)))
    await db.flush()

    logger.info(
        f"Cleanup for session {session_id}: {len(deleted)} deleted, "
        f"{len(failed)} failed, {len(preserved)} preserved"
    )
    return {
        "deleted_files": deleted,
        "failed_files": failed,
        "preserved_files": preserved,
    }


async def cleanup_stale_uploads(db: AsyncSession, max_age_seconds: int) -> dict:
    """
    Clean up pending uploads older than max_age_seconds, across all sessions.
    Abandoned sessions (closed tab, crash) leave these behind.
    """
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
    result = await db.execute(
        select(TrackedUpload.url).where(
            TrackedUpload.status == STATUS_PENDING,
            TrackedUpload.created_at < cutoff,
        )
    )
    stale = list(dict.fromkeys(result.scalars().all()))
    if not stale:
        return {"deleted_files": [], "failed_files": [], "preserved_files": []}

    logger.info(f"Found {len(stale)} stale upload(s) older than {max_age_seconds}s")
    return await cleanup_files(db, urls=stale)
