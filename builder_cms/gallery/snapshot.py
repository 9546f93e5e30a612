"""
Recovery snapshot of pending gallery images.
Keeps unsaved uploads across an accidental reload; not a substitute for the server.
"""
import json
import logging
import re
from pathlib import Path
from typing import Any, Optional, Protocol

from builder_cms.gallery.models import PendingImage

logger = logging.getLogger(__name__)

SNAPSHOT_KEY_TEMPLATE = "pendingImages_project_{project_id}"


def snapshot_key(project_id: int) -> str:
    """Key of the pending-image snapshot for a project."""
    return SNAPSHOT_KEY_TEMPLATE.format(project_id=project_id)


class SnapshotStore(Protocol):
    """Minimal key/value storage for JSON documents."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def contains(self, key: str) -> bool: ...


class MemorySnapshotStore:
    """In-process store; contents vanish with the process."""

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def contains(self, key: str) -> bool:
        return key in self._data


class JsonFileSnapshotStore:
    """
    One JSON file per key under a directory.

    Args:
        directory: Folder holding the snapshot files (created on first write)
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe_key = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe_key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(value, encoding="utf-8")
        tmp_path.replace(path)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def contains(self, key: str) -> bool:
        return self._path(key).exists()


class RecoverySnapshot:
    """
    load/save/clear contract over one snapshot key.
    Last writer wins; there is no merge.
    """

    def __init__(self, store: SnapshotStore, project_id: int):
        self.store = store
        self.project_id = project_id
        self.key = snapshot_key(project_id)

    def exists(self) -> bool:
        return self.store.contains(self.key)

    def load(self) -> list[PendingImage]:
        raw = self.store.get(self.key)
        if not raw:
            return []

        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("snapshot is not a list")
            return [PendingImage.model_validate(item) for item in items]
        except Exception as e:
            logger.error(f"Error parsing saved pending images for {self.key}: {str(e)}")
            self.store.delete(self.key)
            return []

    def save(self, entries: list[PendingImage]) -> None:
        if not entries:
            self.clear()
            return
        payload = [entry.model_dump(mode="json") for entry in entries]
        self.store.set(self.key, json.dumps(payload))
        logger.debug(f"Saved {len(entries)} pending image(s) to {self.key}")

    def clear(self) -> bool:
        """Remove the snapshot. Returns False when there was nothing to remove."""
        if not self.exists():
            return False
        self.store.delete(self.key)
        logger.debug(f"Cleared snapshot {self.key}")
        return True


def read_json(store: SnapshotStore, key: str, default: Any) -> Any:
    """Read a JSON document from a store, falling back to default when absent or corrupt."""
    raw = store.get(key)
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error(f"Corrupt JSON under {key}: {str(e)}")
        return default


def write_json(store: SnapshotStore, key: str, value: Any) -> None:
    store.set(key, json.dumps(value))
