"""
Exception types raised by the gallery editing core.
All inherit from GalleryError so callers can catch the family in one place.
"""
from typing import Any, Optional


class GalleryError(Exception):
    """Base class for gallery lifecycle errors."""


class ValidationError(GalleryError):
    """Rejected input (caption, display order, file type)."""


class FileValidationError(ValidationError):
    """A selected file was rejected before entering the pending store."""

    def __init__(self, filename: str, reason: str):
        self.filename = filename
        self.reason = reason
        super().__init__(f"{filename}: {reason}")


class GalleryLimitError(ValidationError):
    """Adding the batch would exceed the per-project image cap."""

    def __init__(self, current: int, adding: int, limit: int):
        self.current = current
        self.adding = adding
        self.limit = limit
        super().__init__(
            f"Maximum {limit} images allowed. Currently using {current}, tried to add {adding}."
        )


class UploadIncompleteError(GalleryError):
    """Some pending images have no resolved upload URL."""

    def __init__(self, pending_ids: list[str]):
        self.pending_ids = pending_ids
        super().__init__(f"{len(pending_ids)} image(s) still uploading")


class UploadFailedError(GalleryError):
    """The upload provider raised while uploading the queued files."""


class PartialSaveError(GalleryError):
    """Persisting pending images stopped part way through."""

    def __init__(self, saved: int, requested: int, cause: Optional[BaseException] = None):
        self.saved = saved
        self.requested = requested
        self.cause = cause
        super().__init__(f"Saved {saved} of {requested} gallery images")


class SessionBusyError(GalleryError):
    """An operation was attempted while the session is saving or cancelling."""


class ImageNotFound(GalleryError, KeyError):
    """No gallery image (saved or pending) has the given id."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class PendingImageNotFound(ImageNotFound):
    """No pending image has the given local id."""


class ApiError(GalleryError):
    """The CMS API answered with a non-success status."""

    def __init__(self, status_code: int, detail: Any = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"CMS API error {status_code}: {detail}")
