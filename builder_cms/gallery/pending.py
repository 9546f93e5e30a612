"""
Pending image store.
Holds the gallery additions of one editing session that are not saved yet,
mirroring every change to the recovery snapshot.
"""
import itertools
import logging
import uuid
from typing import Callable, Iterable, Iterator, Optional

from builder_cms.gallery.errors import FileValidationError, PendingImageNotFound, ValidationError
from builder_cms.gallery.models import PendingImage, SelectedFile
from builder_cms.gallery.reconciler import ensure_feature, sort_by_order
from builder_cms.gallery.snapshot import RecoverySnapshot

logger = logging.getLogger(__name__)


def new_local_id() -> str:
    return f"temp-{uuid.uuid4().hex[:12]}"


class PendingImageStore:
    """
    Ordered collection of PendingImage entries.

    Add order is tracked separately because it matches the upload provider's
    queue; `entries` exposes the display order.

    Args:
        snapshot: Recovery snapshot written after every mutation (optional)
        on_rejected: Called once per file refused by add_files
    """

    def __init__(
        self,
        snapshot: Optional[RecoverySnapshot] = None,
        on_rejected: Optional[Callable[[FileValidationError], None]] = None,
    ):
        self.snapshot = snapshot
        self.on_rejected = on_rejected
        self._entries: list[PendingImage] = []
        self._sequence = itertools.count()
        self._added_at: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[PendingImage]:
        return iter(self.entries)

    @property
    def entries(self) -> list[PendingImage]:
        return sort_by_order(self._entries)

    def unuploaded(self) -> list[PendingImage]:
        """Entries still waiting for a URL, in upload-queue order."""
        waiting = [e for e in self._entries if not e.uploaded]
        return sorted(waiting, key=lambda e: self._added_at.get(e.local_id, 0))

    def get(self, local_id: str) -> PendingImage:
        for entry in self._entries:
            if entry.local_id == local_id:
                return entry
        raise PendingImageNotFound(local_id)

    def _track_added(self, entries: Iterable[PendingImage]) -> None:
        for entry in entries:
            self._added_at[entry.local_id] = next(self._sequence)

    def max_order(self) -> int:
        return max((e.display_order for e in self._entries), default=0)

    def _persist(self) -> None:
        if self.snapshot is not None:
            self.snapshot.save(self.entries)

    def flush(self) -> None:
        """Write the current entries to the snapshot after an outside change to their flags."""
        self._persist()

    def load(self) -> list[PendingImage]:
        """Restore entries from the snapshot, dropping ones whose upload never finished."""
        if self.snapshot is None:
            return []

        restored = self.snapshot.load()
        kept = [e for e in restored if e.uploaded and e.upload_url]
        if len(kept) != len(restored):
            logger.warning(
                f"Dropped {len(restored) - len(kept)} unfinished upload(s) from {self.snapshot.key}"
            )
        self._entries = kept
        self._track_added(kept)
        if len(kept) != len(restored):
            self._persist()
        return self.entries

    def add_files(
        self,
        files: Iterable[SelectedFile],
        start_order: Optional[int] = None,
        make_first_feature: bool = False,
    ) -> list[PendingImage]:
        """
        Stage selected files as pending images.

        Non-image files are reported through on_rejected and skipped; the rest of
        the batch is still accepted.

        Args:
            files: Files picked by the user
            start_order: Display order of the first accepted file (default: max + 1)
            make_first_feature: Flag the first accepted file as the feature image

        Returns:
            list[PendingImage]: The accepted entries, uploaded=False
        """
        accepted: list[SelectedFile] = []
        for file in files:
            if not file.is_image:
                error = FileValidationError(file.filename, f"not an image ({file.content_type})")
                logger.warning(f"Rejected file {file.filename}: {error.reason}")
                if self.on_rejected is not None:
                    self.on_rejected(error)
                continue
            accepted.append(file)

        if not accepted:
            return []

        base = start_order if start_order is not None else self.max_order() + 1
        created = [
            PendingImage(
                local_id=new_local_id(),
                file=file,
                caption=file.stem,
                display_order=base + index,
                is_feature=make_first_feature and index == 0,
            )
            for index, file in enumerate(accepted)
        ]
        self._entries.extend(created)
        self._track_added(created)
        self._persist()
        logger.info(f"Added {len(created)} pending image(s), display_order from {base}")
        return created

    def on_upload_url_ready(self, local_id: str, url: str) -> PendingImage:
        entry = self.get(local_id)
        entry.upload_url = url
        entry.uploaded = True
        entry.file = None
        self._persist()
        return entry

    def apply_uploaded_urls(self, urls: list[str]) -> list[PendingImage]:
        """
        Attach provider URLs to waiting entries in queue order.
        A short list (partial batch failure) only resolves the matched prefix.
        """
        waiting = self.unuploaded()
        matched = list(zip(waiting, urls))
        for entry, url in matched:
            entry.upload_url = url
            entry.uploaded = True
            entry.file = None

        if len(urls) < len(waiting):
            logger.warning(f"Upload returned {len(urls)} URL(s) for {len(waiting)} file(s)")
        elif len(urls) > len(waiting):
            logger.warning(f"Ignoring {len(urls) - len(waiting)} unexpected upload URL(s)")

        self._persist()
        return [entry for entry, _ in matched]

    def update_caption(self, local_id: str, text: str) -> PendingImage:
        if not isinstance(text, str):
            raise ValidationError(f"Caption must be a string, got {type(text).__name__}")
        entry = self.get(local_id)
        entry.caption = text
        self._persist()
        return entry

    def update_order(self, local_id: str, order: int) -> PendingImage:
        if isinstance(order, bool) or not isinstance(order, int) or order < 0:
            raise ValidationError(f"Display order must be a non-negative integer, got {order!r}")
        entry = self.get(local_id)
        entry.display_order = order
        self._persist()
        return entry

    def _swap_with_neighbour(self, local_id: str, step: int) -> PendingImage:
        ordered = self.entries
        entry = self.get(local_id)
        index = ordered.index(entry)
        other_index = index + step
        if other_index < 0 or other_index >= len(ordered):
            return entry

        other = ordered[other_index]
        entry.display_order, other.display_order = other.display_order, entry.display_order
        # equal orders: the stable sort falls back to list position
        i, j = self._entries.index(entry), self._entries.index(other)
        if (i > j) == (step < 0):
            self._entries[i], self._entries[j] = other, entry
        self._persist()
        return entry

    def move_up(self, local_id: str) -> PendingImage:
        return self._swap_with_neighbour(local_id, -1)

    def move_down(self, local_id: str) -> PendingImage:
        return self._swap_with_neighbour(local_id, 1)

    def remove(self, local_id: str, promote: bool = True) -> PendingImage:
        """
        Delete an entry. When the feature image is removed and promote is set, the
        first remaining entry by display order becomes the feature.
        """
        entry = self.get(local_id)
        self._entries.remove(entry)
        self._added_at.pop(local_id, None)
        if promote and entry.is_feature and self._entries:
            ensure_feature(self._entries)
        self._persist()
        return entry

    def clear(self) -> None:
        self._entries = []
        self._added_at.clear()
        if self.snapshot is not None:
            self.snapshot.clear()
