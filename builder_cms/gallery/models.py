"""
Client-side data types for the gallery editing core.
Persisted images mirror the API response; pending images live only in the editing session.
"""
import mimetypes
from dataclasses import dataclass
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class SelectedFile:
    """A file picked by the user, not yet uploaded."""
    filename: str
    content: bytes
    content_type: str = ""

    def __post_init__(self):
        if not self.content_type:
            guessed, _ = mimetypes.guess_type(self.filename)
            self.content_type = guessed or "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @property
    def stem(self) -> str:
        return self.filename.split(".")[0]


class GalleryImage(BaseModel):
    """
    A gallery image already stored by the backend.
    Mutable only so the session can stage feature changes before the next round-trip.
    """
    id: int
    project_id: int
    image_url: str
    caption: Optional[str] = None
    display_order: int = 0
    is_feature: bool = False

    model_config = ConfigDict(from_attributes=True, extra="ignore")


class PendingImage(BaseModel):
    """An image added during the current editing session and not yet persisted."""
    local_id: str
    upload_url: Optional[str] = None
    caption: str = ""
    display_order: int = 0
    is_feature: bool = False
    uploaded: bool = False

    # Kept in memory only; a restored snapshot has no file to re-upload.
    file: Optional[SelectedFile] = Field(default=None, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)


AnyImage = Union[GalleryImage, PendingImage]


class GalleryItem(BaseModel):
    """One row of the merged display list."""
    key: str
    source: Literal["saved", "pending"]
    image_url: Optional[str] = None
    caption: Optional[str] = None
    display_order: int
    is_feature: bool
    uploaded: bool = True


class SaveResult(BaseModel):
    """Outcome of a completed save."""
    saved: list[GalleryImage] = []
    requested: int = 0
    feature_image_id: Optional[int] = None
