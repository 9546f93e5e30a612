"""
Gallery editing session: the commit/rollback controller.

One session per project edit. It owns the pending-image store and the upload
session, and talks to the persistence, file-tracking and upload collaborators
injected at construction.

States:
    IDLE -> SAVING -> COMMITTED | FAILED
    IDLE -> CANCELLING -> CANCELLED
FAILED may re-enter SAVING when the user retries.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, Union

from builder_cms.config import settings
from builder_cms.gallery.errors import (
    FileValidationError,
    GalleryLimitError,
    ImageNotFound,
    PartialSaveError,
    SessionBusyError,
    UploadFailedError,
    UploadIncompleteError,
    ValidationError,
)
from builder_cms.gallery.models import GalleryImage, GalleryItem, PendingImage, SaveResult, SelectedFile
from builder_cms.gallery.pending import PendingImageStore
from builder_cms.gallery.reconciler import (
    build_save_payload,
    enforce_single_feature_on_load,
    ensure_feature,
    feature_image,
    find_image,
    merge_for_display,
    next_display_order,
    set_feature,
    sort_by_order,
)
from builder_cms.gallery.session import generate_session_id
from builder_cms.gallery.snapshot import RecoverySnapshot
from builder_cms.schemas import ProjectGalleryImageCreate

logger = logging.getLogger(__name__)

ImageId = Union[int, str]


class GalleryPersistence(Protocol):
    async def get_project_gallery(self, project_id: int) -> list[GalleryImage]: ...

    async def add_project_gallery_image(self, record: ProjectGalleryImageCreate) -> GalleryImage: ...

    async def update_project_gallery_image(
        self, image_id: int, caption: Optional[str] = None, display_order: Optional[int] = None
    ) -> GalleryImage: ...

    async def delete_project_gallery_image(self, image_id: int) -> None: ...

    async def set_project_feature_image(self, project_id: int, image_id: int) -> GalleryImage: ...


class FileTracker(Protocol):
    def track_file(self, url: str, session_id: str) -> bool: ...

    def tracked(self, session_id: str) -> list[str]: ...

    async def commit_files(self, session_id: str, urls: Optional[list[str]] = None) -> list[str]: ...

    async def cleanup_files(self, session_id: str, urls: Optional[list[str]] = None) -> list[str]: ...


class UploadProvider(Protocol):
    def add_files(self, files: list[SelectedFile]) -> None: ...

    async def upload(self) -> list[str]: ...

    def remove_file(self, index: int) -> None: ...

    def clear_files(self, commit: bool = False) -> None: ...


class SessionState(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    COMMITTED = "committed"
    FAILED = "failed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"


@dataclass
class Notification:
    """A user-facing toast."""
    title: str
    description: str
    blocking: bool = False


@dataclass
class GalleryCallbacks:
    """Optional hooks fired by the session; any of them may be left unset."""
    on_notify: Optional[Callable[[Notification], None]] = None
    on_upload_complete: Optional[Callable[[list[str]], None]] = None
    on_upload_error: Optional[Callable[[Exception], None]] = None
    on_saved: Optional[Callable[[SaveResult], None]] = None
    on_invalidate: Optional[Callable[[int], None]] = None
    on_cancelled: Optional[Callable[[list[str]], None]] = None


class GalleryEditSession:
    """
    Editing session for one project's gallery.

    Args:
        project_id: Project being edited
        persistence: Gallery CRUD collaborator
        tracker: Upload session tracker (file commit/cleanup collaborator)
        provider: Upload provider holding the selected files
        snapshot: Recovery snapshot for pending images (optional)
        callbacks: Hook configuration
        session_id: Reuse an existing upload session id (default: a new one)
        max_images: Cap on saved + pending images (default: settings.GALLERY_MAX_IMAGES)
    """

    def __init__(
        self,
        project_id: int,
        persistence: GalleryPersistence,
        tracker: FileTracker,
        provider: UploadProvider,
        snapshot: Optional[RecoverySnapshot] = None,
        callbacks: Optional[GalleryCallbacks] = None,
        session_id: Optional[str] = None,
        max_images: Optional[int] = None,
    ):
        self.project_id = project_id
        self.persistence = persistence
        self.tracker = tracker
        self.provider = provider
        self.callbacks = callbacks or GalleryCallbacks()
        self.session_id = session_id or generate_session_id()
        self.max_images = max_images if max_images is not None else settings.GALLERY_MAX_IMAGES

        self._rejected: list[FileValidationError] = []
        self.store = PendingImageStore(snapshot, on_rejected=self._rejected.append)
        self.persisted: list[GalleryImage] = []
        self._server_feature_ids: set[int] = set()
        self.state = SessionState.IDLE

    # -- helpers ---------------------------------------------------------

    @property
    def pending(self) -> list[PendingImage]:
        return self.store.entries

    @property
    def can_save(self) -> bool:
        return self.state not in (SessionState.SAVING, SessionState.CANCELLING, SessionState.CANCELLED)

    @property
    def image_count(self) -> int:
        return len(self.persisted) + len(self.store)

    def gallery(self) -> list[GalleryItem]:
        """Saved and pending images merged in display order."""
        return merge_for_display(self.persisted, self.store.entries)

    def feature(self) -> Optional[Union[GalleryImage, PendingImage]]:
        return feature_image(self.persisted, self.store.entries)

    def _notify(self, title: str, description: str, blocking: bool = False) -> None:
        note = Notification(title, description, blocking)
        if note.blocking:
            logger.warning(f"[project {self.project_id}] {title}: {description}")
        else:
            logger.info(f"[project {self.project_id}] {title}: {description}")
        if self.callbacks.on_notify is not None:
            self.callbacks.on_notify(note)

    def _invalidate(self) -> None:
        if self.callbacks.on_invalidate is not None:
            self.callbacks.on_invalidate(self.project_id)

    def _check_editable(self) -> None:
        if self.state in (SessionState.SAVING, SessionState.CANCELLING):
            raise SessionBusyError(f"Gallery session is {self.state.value}")
        if self.state == SessionState.CANCELLED:
            raise SessionBusyError("Gallery session was cancelled")
        if self.state == SessionState.COMMITTED:
            self.state = SessionState.IDLE

    def _find_persisted(self, image_id: int) -> GalleryImage:
        for image in self.persisted:
            if image.id == image_id:
                return image
        raise ImageNotFound(image_id)

    def _replace_persisted(self, updated: GalleryImage) -> GalleryImage:
        current = self._find_persisted(updated.id)
        current.caption = updated.caption
        current.display_order = updated.display_order
        self.persisted = sort_by_order(self.persisted)
        return current

    # -- lifecycle -------------------------------------------------------

    async def open(self) -> list[GalleryItem]:
        """Load saved images and restore pending ones from the recovery snapshot."""
        images = await self.persistence.get_project_gallery(self.project_id)
        self._server_feature_ids = {img.id for img in images if img.is_feature}
        self.persisted = enforce_single_feature_on_load(images)

        restored = self.store.load()
        for entry in restored:
            self.tracker.track_file(entry.upload_url, self.session_id)
        if restored:
            ensure_feature(self.persisted, self.store.entries)
            self.store.flush()
            self._notify(
                "Unsaved images restored",
                f"{len(restored)} image(s) from a previous edit are waiting to be saved.",
            )

        logger.info(
            f"Opened gallery session {self.session_id} for project {self.project_id}: "
            f"{len(self.persisted)} saved, {len(restored)} pending"
        )
        return self.gallery()

    def add_files(self, files: Iterable[SelectedFile]) -> list[PendingImage]:
        """
        Stage files for upload. Non-image files are skipped with a notification; a
        batch that would exceed the image cap is refused whole.
        """
        self._check_editable()
        files = list(files)
        adding = sum(1 for f in files if f.is_image)
        if adding and self.image_count + adding > self.max_images:
            error = GalleryLimitError(self.image_count, adding, self.max_images)
            self._notify("Too many images", str(error), blocking=True)
            return []

        self._rejected.clear()
        created = self.store.add_files(
            files,
            start_order=next_display_order(self.persisted, self.store.entries),
            make_first_feature=self.feature() is None,
        )
        if self._rejected:
            names = ", ".join(e.filename for e in self._rejected)
            self._notify("Invalid files", f"Please select image files only. Skipped: {names}", blocking=True)

        if created:
            self.provider.add_files([entry.file for entry in created])
        return created

    async def upload(self) -> list[PendingImage]:
        """
        Upload every queued file and attach the returned URLs.
        A short result leaves the unmatched entries pending and raises a blocking toast.

        Raises:
            UploadFailedError: If the provider raised
        """
        waiting = self.store.unuploaded()
        if not waiting:
            return []

        try:
            urls = await self.provider.upload()
        except Exception as e:
            logger.error(f"Upload failed for project {self.project_id}: {str(e)}", exc_info=True)
            if self.callbacks.on_upload_error is not None:
                self.callbacks.on_upload_error(e)
            self._notify("Upload Error", str(e) or "Failed to upload images. Please try again.", blocking=True)
            raise UploadFailedError(str(e)) from e

        resolved = self.store.apply_uploaded_urls(urls)
        for entry in resolved:
            self.tracker.track_file(entry.upload_url, self.session_id)

        if self.callbacks.on_upload_complete is not None:
            self.callbacks.on_upload_complete(urls)

        if len(resolved) < len(waiting):
            self._notify(
                "Upload incomplete",
                f"Only {len(resolved)} of {len(waiting)} images uploaded. "
                f"Retry the upload or remove the failed images.",
                blocking=True,
            )
        return resolved

    # -- edits -----------------------------------------------------------

    def set_feature(self, image_id: ImageId) -> Union[GalleryImage, PendingImage]:
        """Make one saved or pending image the feature. Saved flags are pushed on save."""
        self._check_editable()
        target = set_feature(image_id, self.persisted, self.store.entries)
        self.store.flush()
        return target

    async def update_caption(self, image_id: ImageId, text: str) -> Union[GalleryImage, PendingImage]:
        self._check_editable()
        if isinstance(image_id, str):
            return self.store.update_caption(image_id, text)

        if not isinstance(text, str):
            raise ValidationError(f"Caption must be a string, got {type(text).__name__}")
        self._find_persisted(image_id)
        updated = await self.persistence.update_project_gallery_image(image_id, caption=text)
        self._invalidate()
        return self._replace_persisted(updated)

    async def update_order(self, image_id: ImageId, order: int) -> Union[GalleryImage, PendingImage]:
        self._check_editable()
        if isinstance(image_id, str):
            return self.store.update_order(image_id, order)

        if isinstance(order, bool) or not isinstance(order, int) or order < 0:
            raise ValidationError(f"Display order must be a non-negative integer, got {order!r}")
        self._find_persisted(image_id)
        updated = await self.persistence.update_project_gallery_image(image_id, display_order=order)
        self._invalidate()
        return self._replace_persisted(updated)

    def move_up(self, local_id: str) -> PendingImage:
        self._check_editable()
        return self.store.move_up(local_id)

    def move_down(self, local_id: str) -> PendingImage:
        self._check_editable()
        return self.store.move_down(local_id)

    def remove_pending(self, local_id: str) -> PendingImage:
        """
        Drop a pending image. If it was the feature, the first remaining image by
        display order (saved or pending) takes over. An uploaded file stays tracked
        so the session reclaims it.
        """
        self._check_editable()
        entry = self.store.get(local_id)
        if not entry.uploaded:
            self.provider.remove_file(self.store.unuploaded().index(entry))

        self.store.remove(local_id, promote=False)
        if entry.is_feature:
            ensure_feature(self.persisted, self.store.entries)
            self.store.flush()
        return entry

    async def delete_saved(self, image_id: int) -> GalleryImage:
        """Delete a saved image on the server, then repair the feature locally."""
        self._check_editable()
        image = self._find_persisted(image_id)
        await self.persistence.delete_project_gallery_image(image_id)

        self.persisted = [img for img in self.persisted if img.id != image_id]
        self._server_feature_ids.discard(image_id)
        if image.is_feature:
            # the server promotes the first remaining saved image by order
            if self.persisted and not self._server_feature_ids:
                self._server_feature_ids = {sort_by_order(self.persisted)[0].id}
            ensure_feature(self.persisted, self.store.entries)
            self.store.flush()

        self._invalidate()
        self._notify("Image deleted", "The gallery image has been deleted successfully.")
        return image

    # -- commit / rollback ----------------------------------------------

    async def _persist_sequentially(self, records: list[ProjectGalleryImageCreate]) -> list[GalleryImage]:
        """
        Persist records one at a time, in order. A failure stops the loop so the
        saved images always form a prefix and the rest stay pending for retry.
        """
        entries = sort_by_order(self.store.entries)
        saved: list[GalleryImage] = []

        for entry, record in zip(entries, records):
            try:
                image = await self.persistence.add_project_gallery_image(record)
            except Exception as e:
                logger.error(
                    f"Error saving gallery image {len(saved) + 1}/{len(records)} "
                    f"for project {self.project_id}: {str(e)}",
                    exc_info=True,
                )
                self.state = SessionState.FAILED
                if saved:
                    await self.tracker.commit_files(self.session_id, [img.image_url for img in saved])
                    self._invalidate()
                self._notify(
                    "Save failed",
                    f"Saved {len(saved)} of {len(records)} gallery images. Please try again.",
                    blocking=True,
                )
                raise PartialSaveError(len(saved), len(records), e) from e

            # the server may auto-promote the first image; the local flag follows the record
            if image.is_feature:
                self._server_feature_ids = {image.id}
            image.is_feature = record.is_feature
            self.persisted.append(image)
            saved.append(image)
            self.store.remove(entry.local_id, promote=False)

        self.persisted = sort_by_order(self.persisted)
        return saved

    async def _push_feature(self, saved_count: int, requested: int) -> Optional[int]:
        """Make the server's feature match the local one when they differ."""
        feature = feature_image(self.persisted)
        if feature is None or self._server_feature_ids == {feature.id}:
            return feature.id if feature is not None else None

        try:
            await self.persistence.set_project_feature_image(self.project_id, feature.id)
        except Exception as e:
            logger.error(f"Error setting feature image {feature.id}: {str(e)}", exc_info=True)
            self.state = SessionState.FAILED
            self._notify("Save failed", "The feature image could not be updated. Please try again.", blocking=True)
            raise PartialSaveError(saved_count, requested, e) from e

        self._server_feature_ids = {feature.id}
        return feature.id

    async def save(self) -> SaveResult:
        """
        Upload anything still queued, then persist every pending image in order.

        Raises:
            SessionBusyError: While another save or a cancel is running
            UploadFailedError: If the upload provider failed
            UploadIncompleteError: If some images still have no URL
            PartialSaveError: If persistence failed part way; session is FAILED

        Any other error leaves the session IDLE when nothing was persisted yet, FAILED
        otherwise, so it can be retried or cancelled.
        """
        if not self.can_save:
            raise SessionBusyError(f"Cannot save while session is {self.state.value}")

        self.state = SessionState.SAVING
        try:
            if self.store.unuploaded():
                await self.upload()
            records = build_save_payload(self.persisted, self.store.entries, self.project_id)
        except UploadIncompleteError as e:
            self.state = SessionState.IDLE
            self._notify(
                "Images still uploading",
                f"{len(e.pending_ids)} image(s) have not finished uploading. "
                f"Wait for the upload or remove them before saving.",
                blocking=True,
            )
            raise
        except Exception:
            self.state = SessionState.IDLE
            raise

        try:
            saved = await self._persist_sequentially(records)
            feature_id = await self._push_feature(len(saved), len(records))

            kept = [img.image_url for img in saved]
            if kept:
                await self.tracker.commit_files(self.session_id, kept)
            leftover = self.tracker.tracked(self.session_id)
            if leftover:
                try:
                    await self.tracker.cleanup_files(self.session_id)
                except Exception as e:
                    logger.error(f"Error cleaning up {len(leftover)} discarded upload(s): {str(e)}")

            self.store.clear()
            self.provider.clear_files(commit=True)
        except Exception as e:
            if self.state == SessionState.SAVING:
                logger.error(f"Error saving gallery for project {self.project_id}: {str(e)}", exc_info=True)
                self.state = SessionState.FAILED
            raise

        self.state = SessionState.COMMITTED

        result = SaveResult(saved=saved, requested=len(records), feature_image_id=feature_id)
        if saved:
            self._notify("Gallery images saved", f"Successfully saved {len(saved)} new images to the gallery.")
        self._invalidate()
        if self.callbacks.on_saved is not None:
            self.callbacks.on_saved(result)
        return result

    async def cancel(self) -> list[str]:
        """
        Discard pending images and reclaim their uploaded files.
        Cleanup is best-effort: failures are logged and the session closes anyway.

        Returns:
            list[str]: URLs the server reports as deleted
        """
        if self.state == SessionState.SAVING:
            raise SessionBusyError("Cannot cancel while saving")
        if self.state in (SessionState.CANCELLING, SessionState.CANCELLED):
            return []

        self.state = SessionState.CANCELLING
        for entry in self.store.entries:
            if entry.uploaded and entry.upload_url:
                self.tracker.track_file(entry.upload_url, self.session_id)

        removed: list[str] = []
        if self.tracker.tracked(self.session_id):
            try:
                removed = await self.tracker.cleanup_files(self.session_id)
            except Exception as e:
                logger.error(f"Error cleaning up files for session {self.session_id}: {str(e)}", exc_info=True)

        self.store.clear()
        self.provider.clear_files(commit=False)
        self.state = SessionState.CANCELLED
        logger.info(f"Cancelled gallery session {self.session_id}, removed {len(removed)} file(s)")

        if self.callbacks.on_cancelled is not None:
            self.callbacks.on_cancelled(removed)
        return removed
