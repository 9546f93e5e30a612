"""
HTTP collaborators for the gallery editing session.
Talks to the CMS API with httpx: gallery persistence, file session endpoints,
and an upload provider that pushes selected files through POST /api/cms/upload.
"""
import logging
from typing import Any, Callable, Optional

import httpx

from builder_cms.config import settings
from builder_cms.gallery.controller import GalleryCallbacks, GalleryEditSession
from builder_cms.gallery.errors import ApiError
from builder_cms.gallery.models import GalleryImage, SelectedFile
from builder_cms.gallery.session import UploadSessionTracker, generate_session_id
from builder_cms.gallery.snapshot import JsonFileSnapshotStore, RecoverySnapshot, SnapshotStore
from builder_cms.schemas import ProjectGalleryImageCreate

logger = logging.getLogger(__name__)


class CmsApiClient:
    """
    Async client for the CMS API.

    Args:
        base_url: API root (default: settings.CMS_API_BASE_URL)
        password: CMS admin password sent as X-CMS-Password
        transport: Optional httpx transport (e.g. ASGITransport in tests)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        password: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        headers = {"X-CMS-Password": password} if password else {}
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.CMS_API_BASE_URL,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "CmsApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code >= 400:
            try:
                detail = response.json()
            except ValueError:
                detail = response.text
            logger.error(f"{method} {path} failed with {response.status_code}: {detail}")
            raise ApiError(response.status_code, detail)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Gallery persistence

    async def get_project_gallery(self, project_id: int) -> list[GalleryImage]:
        data = await self._request("GET", f"/api/projects/{project_id}/gallery")
        return [GalleryImage.model_validate(item) for item in data]

    async def add_project_gallery_image(self, record: ProjectGalleryImageCreate) -> GalleryImage:
        data = await self._request(
            "POST",
            f"/api/cms/projects/{record.project_id}/gallery",
            json=record.model_dump(exclude_none=True),
        )
        return GalleryImage.model_validate(data)

    async def update_project_gallery_image(
        self,
        image_id: int,
        caption: Optional[str] = None,
        display_order: Optional[int] = None,
    ) -> GalleryImage:
        body = {}
        if caption is not None:
            body["caption"] = caption
        if display_order is not None:
            body["display_order"] = display_order
        data = await self._request("PUT", f"/api/cms/projects/gallery/{image_id}", json=body)
        return GalleryImage.model_validate(data)

    async def delete_project_gallery_image(self, image_id: int) -> None:
        await self._request("DELETE", f"/api/cms/projects/gallery/{image_id}")

    async def set_project_feature_image(self, project_id: int, image_id: int) -> GalleryImage:
        data = await self._request("PUT", f"/api/cms/projects/{project_id}/gallery/{image_id}/set-feature")
        return GalleryImage.model_validate(data)

    # File endpoints

    async def upload_file(self, file: SelectedFile, session_id: str) -> str:
        data = await self._request(
            "POST",
            "/api/cms/upload",
            params={"session_id": session_id},
            files={"file": (file.filename, file.content, file.content_type)},
        )
        return data["url"]

    async def commit_files(self, session_id: str, urls: list[str]) -> list[str]:
        data = await self._request(
            "POST", "/api/cms/files/commit", json={"session_id": session_id, "file_urls": urls}
        )
        return data.get("files", [])

    async def cleanup_files(self, session_id: str, urls: list[str]) -> dict[str, Any]:
        return await self._request(
            "POST", "/api/cms/files/cleanup", json={"session_id": session_id, "file_urls": urls}
        )


class HttpUploadProvider:
    """
    Upload provider backed by the CMS upload endpoint.

    Files upload one at a time in queue order. The first failure stops the batch,
    so the returned URLs are always an order-preserving prefix of the queue.
    Uploaded files leave the queue; failed ones stay for a retry.
    """

    def __init__(
        self,
        client: CmsApiClient,
        session_id: str,
        on_progress: Optional[Callable[[int], None]] = None,
    ):
        self.client = client
        self.session_id = session_id
        self.on_progress = on_progress
        self._queue: list[SelectedFile] = []

    @property
    def files(self) -> list[SelectedFile]:
        return list(self._queue)

    def add_files(self, files: list[SelectedFile]) -> None:
        self._queue.extend(files)

    def remove_file(self, index: int) -> None:
        del self._queue[index]

    def clear_files(self, commit: bool = False) -> None:
        if self._queue:
            logger.debug(f"Clearing {len(self._queue)} queued file(s) (commit={commit})")
        self._queue.clear()

    async def upload(self) -> list[str]:
        """
        Returns:
            list[str]: One URL per uploaded file, possibly fewer than queued

        Raises:
            Exception: If the very first file fails (nothing uploaded)
        """
        total = len(self._queue)
        urls: list[str] = []
        while self._queue:
            file = self._queue[0]
            try:
                url = await self.client.upload_file(file, self.session_id)
            except Exception as e:
                logger.error(f"Error uploading {file.filename}: {str(e)}")
                if not urls:
                    raise
                break

            self._queue.pop(0)
            urls.append(url)
            if self.on_progress is not None:
                self.on_progress(int(len(urls) * 100 / total))

        logger.info(f"Uploaded {len(urls)} of {total} file(s) for session {self.session_id}")
        return urls


def create_gallery_session(
    project_id: int,
    client: CmsApiClient,
    store: Optional[SnapshotStore] = None,
    callbacks: Optional[GalleryCallbacks] = None,
) -> GalleryEditSession:
    """
    Wire a GalleryEditSession to the CMS API.

    Args:
        project_id: Project to edit
        client: Connected CMS API client
        store: Snapshot storage (default: JSON files under settings.GALLERY_SNAPSHOT_DIR)
        callbacks: Optional session hooks
    """
    store = store if store is not None else JsonFileSnapshotStore(settings.GALLERY_SNAPSHOT_DIR)
    session_id = generate_session_id()
    return GalleryEditSession(
        project_id=project_id,
        persistence=client,
        tracker=UploadSessionTracker(store, remote=client),
        provider=HttpUploadProvider(client, session_id),
        snapshot=RecoverySnapshot(store, project_id),
        callbacks=callbacks,
        session_id=session_id,
    )
