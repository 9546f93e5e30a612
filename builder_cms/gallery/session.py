"""
Upload session tracking.
Associates uploaded file URLs with an editing session so they can be committed
(kept) on save or cleaned up (deleted from storage) on cancel.
"""
import logging
import secrets
import string
import time
from collections import defaultdict
from typing import Any, Callable, Optional, Protocol

from builder_cms.gallery.snapshot import SnapshotStore, read_json, write_json

logger = logging.getLogger(__name__)

LEDGER_KEY = "uploaded_files"
_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    """Opaque per-form token, e.g. session_1760000000000_k3x9a1b."""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(7))
    return f"session_{int(time.time() * 1000)}_{suffix}"


class FileSessionApi(Protocol):
    """Server endpoints that own the stored files."""

    async def commit_files(self, session_id: str, urls: list[str]) -> list[str]: ...

    async def cleanup_files(self, session_id: str, urls: list[str]) -> dict[str, Any]: ...


class UploadSessionTracker:
    """
    Ledger of uploaded-but-uncommitted files, persisted in a snapshot store.

    Args:
        store: Storage for the ledger (shared with the pending-image snapshot)
        remote: Server file endpoints; None keeps tracking purely local
        clock: Time source in seconds, replaceable in tests
    """

    def __init__(
        self,
        store: SnapshotStore,
        remote: Optional[FileSessionApi] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.remote = remote
        self.clock = clock

    def _entries(self) -> list[dict]:
        return read_json(self.store, LEDGER_KEY, [])

    def _save_entries(self, entries: list[dict]) -> None:
        write_json(self.store, LEDGER_KEY, entries)

    def track_file(self, url: str, session_id: str, file_key: Optional[str] = None) -> bool:
        """Record url as owned by session_id. Returns False if it was already tracked."""
        if not url:
            return False

        entries = self._entries()
        if any(e["url"] == url and e["session_id"] == session_id for e in entries):
            return False

        entries.append({
            "url": url,
            "session_id": session_id,
            "timestamp": self.clock(),
            "key": file_key,
        })
        self._save_entries(entries)
        logger.info(f"Tracked file: {url} for session {session_id}")
        return True

    def tracked(self, session_id: str) -> list[str]:
        return [e["url"] for e in self._entries() if e["session_id"] == session_id]

    def _take(self, session_id: str, urls: Optional[list[str]]) -> tuple[list[dict], list[dict]]:
        selected, remaining = [], []
        for entry in self._entries():
            if entry["session_id"] == session_id and (urls is None or entry["url"] in urls):
                selected.append(entry)
            else:
                remaining.append(entry)
        return selected, remaining

    async def commit_files(self, session_id: str, urls: Optional[list[str]] = None) -> list[str]:
        """
        Release ownership of the session's files without deleting them.

        Args:
            session_id: Session to commit
            urls: Only commit these URLs (default: every file of the session)

        Returns:
            list[str]: URLs that were committed
        """
        selected, remaining = self._take(session_id, urls)
        self._save_entries(remaining)
        committed = [e["url"] for e in selected]

        if committed and self.remote is not None:
            try:
                await self.remote.commit_files(session_id, committed)
            except Exception as e:
                logger.error(f"Error committing files on server for session {session_id}: {str(e)}")

        logger.info(f"Committed {len(committed)} files for session {session_id}")
        return committed

    async def cleanup_files(self, session_id: str, urls: Optional[list[str]] = None) -> list[str]:
        """
        Delete the session's uncommitted files from storage.

        Entries are restored to the ledger if the server call fails, so a later
        cleanup_old_files pass can still reclaim them.

        Returns:
            list[str]: URLs the server reports as deleted

        Raises:
            Exception: Whatever the server call raised
        """
        selected, remaining = self._take(session_id, urls)
        if not selected:
            return []

        self._save_entries(remaining)
        selected_urls = [e["url"] for e in selected]

        if self.remote is None:
            logger.info(f"Released {len(selected_urls)} local files for session {session_id}")
            return selected_urls

        try:
            result = await self.remote.cleanup_files(session_id, selected_urls)
        except Exception:
            self._save_entries(self._entries() + selected)
            raise

        deleted = list(result.get("deleted_files", []))
        logger.info(
            f"Cleaned up {len(deleted)} files for session {session_id} "
            f"({len(result.get('preserved_files', []))} preserved, "
            f"{len(result.get('failed_files', []))} failed)"
        )
        return deleted

    async def cleanup_old_files(self, max_age_seconds: float = 3600) -> list[str]:
        """Clean up ledger entries older than max_age_seconds, grouped by session."""
        now = self.clock()
        by_session: dict[str, list[str]] = defaultdict(list)
        for entry in self._entries():
            if now - entry["timestamp"] > max_age_seconds:
                by_session[entry["session_id"]].append(entry["url"])

        cleaned: list[str] = []
        for session_id, urls in by_session.items():
            try:
                cleaned.extend(await self.cleanup_files(session_id, urls))
            except Exception as e:
                logger.error(f"Error cleaning up files for session {session_id}: {str(e)}")

        logger.info(f"Cleaned up {len(cleaned)} old files")
        return cleaned
