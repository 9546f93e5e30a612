"""
End-to-end tests: the gallery editing session driven through CmsApiClient
against the FastAPI app.
"""
import httpx
import pytest
from sqlalchemy import select

from builder_cms.config import settings
from builder_cms.gallery.client import CmsApiClient, create_gallery_session
from builder_cms.gallery.controller import GalleryCallbacks, SessionState
from builder_cms.gallery.errors import ApiError, PartialSaveError
from builder_cms.gallery.models import SelectedFile
from builder_cms.gallery.snapshot import MemorySnapshotStore
from builder_cms.models import TrackedUpload
from builder_cms.schemas import ProjectGalleryImageCreate


@pytest.fixture
async def api(app, cms_password):
    async with CmsApiClient(
        base_url="http://test",
        password=cms_password,
        transport=httpx.ASGITransport(app=app),
    ) as api:
        yield api


@pytest.fixture
def selected(png_factory):
    def factory(*names):
        return [SelectedFile(filename=name, content=png_factory(), content_type="image/png") for name in names]
    return factory


async def upload_statuses(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(TrackedUpload.url, TrackedUpload.status))
        return dict(result.all())


class TestCmsApiClient:
    async def test_error_status_raises_api_error(self, api):
        with pytest.raises(ApiError) as exc_info:
            await api.add_project_gallery_image(
                ProjectGalleryImageCreate(project_id=999, image_url="https://cdn.test/a.webp")
            )

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail["error"] == "Project not found"

    async def test_gallery_crud(self, api, project):
        first = await api.add_project_gallery_image(
            ProjectGalleryImageCreate(project_id=project["id"], image_url="https://cdn.test/a.webp")
        )
        second = await api.add_project_gallery_image(
            ProjectGalleryImageCreate(project_id=project["id"], image_url="https://cdn.test/b.webp")
        )

        updated = await api.update_project_gallery_image(second.id, caption="Lobby")
        featured = await api.set_project_feature_image(project["id"], second.id)
        await api.delete_project_gallery_image(first.id)
        gallery = await api.get_project_gallery(project["id"])

        assert updated.caption == "Lobby"
        assert featured.is_feature is True
        assert [(img.id, img.is_feature) for img in gallery] == [(second.id, True)]


class TestGallerySessionOverHttp:
    async def test_save_persists_uploads_and_commits_them(self, api, project, selected, session_factory):
        saved_results = []
        session = create_gallery_session(
            project["id"], api, store=MemorySnapshotStore(),
            callbacks=GalleryCallbacks(on_saved=saved_results.append),
        )
        await session.open()
        session.add_files(selected("front.png", "rear.png"))

        result = await session.save()

        assert session.state == SessionState.COMMITTED
        assert len(result.saved) == 2
        gallery = await api.get_project_gallery(project["id"])
        assert [img.caption for img in gallery] == ["front", "rear"]
        assert [img.is_feature for img in gallery] == [True, False]
        assert set((await upload_statuses(session_factory)).values()) == {"committed"}
        assert saved_results == [result]

    async def test_cancel_deletes_uploaded_files(self, api, project, selected, storage, session_factory):
        session = create_gallery_session(project["id"], api, store=MemorySnapshotStore())
        await session.open()
        session.add_files(selected("a.png", "b.png", "c.png"))
        await session.upload()
        urls = sorted(e.upload_url for e in session.pending)

        removed = await session.cancel()

        assert sorted(removed) == urls
        assert sorted(call.args[0] for call in storage.delete.await_args_list) == urls
        assert await upload_statuses(session_factory) == {}
        assert await api.get_project_gallery(project["id"]) == []

    async def test_upload_failure_keeps_remaining_files_queued(self, api, project, selected, storage):
        storage.upload.side_effect = [
            {"url": "https://res.cloudinary.com/demo/image/upload/v1/projects/ok.webp", "public_id": "projects/ok"},
            RuntimeError("cloudinary down"),
        ]
        session = create_gallery_session(project["id"], api, store=MemorySnapshotStore())
        await session.open()
        session.add_files(selected("a.png", "b.png"))

        resolved = await session.upload()

        assert [e.upload_url for e in resolved] == [
            "https://res.cloudinary.com/demo/image/upload/v1/projects/ok.webp"
        ]
        assert len(session.store.unuploaded()) == 1
        assert len(session.provider.files) == 1

    async def test_snapshot_survives_a_new_session(self, api, project, selected):
        store = MemorySnapshotStore()
        first = create_gallery_session(project["id"], api, store=store)
        await first.open()
        first.add_files(selected("a.png"))
        await first.upload()

        second = create_gallery_session(project["id"], api, store=store)
        await second.open()
        result = await second.save()

        assert len(result.saved) == 1
        assert (await api.get_project_gallery(project["id"]))[0].is_feature is True

    async def test_chosen_feature_is_kept_in_an_empty_project(self, api, client, project, selected):
        session = create_gallery_session(project["id"], api, store=MemorySnapshotStore())
        await session.open()
        front, rear = session.add_files(selected("front.png", "rear.png"))
        session.set_feature(rear.local_id)

        result = await session.save()

        gallery = await api.get_project_gallery(project["id"])
        assert [(img.caption, img.is_feature) for img in gallery] == [("front", False), ("rear", True)]
        assert [img.is_feature for img in session.persisted] == [False, True]
        assert result.feature_image_id == gallery[1].id
        refreshed = await client.get(f"/api/projects/{project['id']}")
        assert refreshed.json()["image"] == gallery[1].image_url

    async def test_partial_save_leaves_one_feature_on_each_side(self, api, project, selected, monkeypatch):
        session = create_gallery_session(project["id"], api, store=MemorySnapshotStore())
        await session.open()
        a, b, c = session.add_files(selected("a.png", "b.png", "c.png"))
        session.set_feature(c.local_id)
        monkeypatch.setattr(settings, "GALLERY_MAX_IMAGES", 1)

        with pytest.raises(PartialSaveError) as exc_info:
            await session.save()

        assert exc_info.value.saved == 1
        gallery = await api.get_project_gallery(project["id"])
        assert [(img.caption, img.is_feature) for img in gallery] == [("a", True)]
        assert [img.is_feature for img in session.persisted] == [False]
        assert [e.is_feature for e in session.pending] == [False, True]
        assert session.state == SessionState.FAILED
