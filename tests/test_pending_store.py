"""
Tests for PendingImageStore and its snapshot mirroring.
"""
import pytest

from builder_cms.gallery.errors import PendingImageNotFound, ValidationError
from builder_cms.gallery.models import SelectedFile
from builder_cms.gallery.pending import PendingImageStore
from builder_cms.gallery.snapshot import MemorySnapshotStore, RecoverySnapshot


def image_file(name: str) -> SelectedFile:
    return SelectedFile(filename=name, content=b"\x89PNG fake")


@pytest.fixture
def snapshot():
    return RecoverySnapshot(MemorySnapshotStore(), project_id=3)


@pytest.fixture
def rejected():
    return []


@pytest.fixture
def store(snapshot, rejected):
    return PendingImageStore(snapshot, on_rejected=rejected.append)


class TestAddFiles:
    """Staging selected files."""

    def test_entries_start_unuploaded_with_sequential_orders(self, store):
        created = store.add_files([image_file("front.jpg"), image_file("back.png")], start_order=4)

        assert [e.display_order for e in created] == [4, 5]
        assert all(not e.uploaded and e.upload_url is None for e in created)
        assert [e.caption for e in created] == ["front", "back"]
        assert created[0].local_id.startswith("temp-")
        assert created[0].local_id != created[1].local_id

    def test_default_start_follows_highest_order(self, store):
        store.add_files([image_file("a.jpg")], start_order=7)
        created = store.add_files([image_file("b.jpg")])

        assert created[0].display_order == 8

    def test_first_file_can_be_feature(self, store):
        created = store.add_files([image_file("a.jpg"), image_file("b.jpg")], make_first_feature=True)

        assert [e.is_feature for e in created] == [True, False]

    def test_non_images_rejected_without_aborting_batch(self, store, rejected):
        created = store.add_files([
            image_file("a.jpg"),
            SelectedFile(filename="spec-sheet.pdf", content=b"%PDF"),
            image_file("b.png"),
        ], start_order=1)

        assert [e.caption for e in created] == ["a", "b"]
        assert [e.display_order for e in created] == [1, 2]
        assert len(rejected) == 1
        assert rejected[0].filename == "spec-sheet.pdf"

    def test_mutations_are_mirrored_to_snapshot(self, store, snapshot):
        created = store.add_files([image_file("a.jpg")], start_order=1)

        restored = snapshot.load()
        assert [e.local_id for e in restored] == [created[0].local_id]
        assert restored[0].file is None


class TestUploadResolution:
    def test_prefix_of_urls_resolves_queue_order(self, store):
        first, second = store.add_files([image_file("a.jpg"), image_file("b.jpg")], start_order=1)

        resolved = store.apply_uploaded_urls(["https://cdn.test/a.webp"])

        assert resolved == [first]
        assert first.uploaded and first.upload_url == "https://cdn.test/a.webp"
        assert first.file is None
        assert not second.uploaded
        assert store.unuploaded() == [second]

    def test_queue_order_survives_reordering(self, store):
        first, second = store.add_files([image_file("a.jpg"), image_file("b.jpg")], start_order=1)
        store.move_up(second.local_id)

        store.apply_uploaded_urls(["https://cdn.test/a.webp", "https://cdn.test/b.webp"])

        assert first.upload_url == "https://cdn.test/a.webp"
        assert second.upload_url == "https://cdn.test/b.webp"

    def test_on_upload_url_ready(self, store):
        (entry,) = store.add_files([image_file("a.jpg")], start_order=1)

        store.on_upload_url_ready(entry.local_id, "https://cdn.test/a.webp")

        assert entry.uploaded is True


class TestEdits:
    """Caption, order and neighbour moves."""

    def test_update_caption(self, store):
        (entry,) = store.add_files([image_file("a.jpg")], start_order=1)

        store.update_caption(entry.local_id, "North elevation")

        assert store.get(entry.local_id).caption == "North elevation"

    def test_update_caption_rejects_non_string(self, store):
        (entry,) = store.add_files([image_file("a.jpg")], start_order=1)

        with pytest.raises(ValidationError):
            store.update_caption(entry.local_id, 42)

    @pytest.mark.parametrize("order", [-1, 1.5, "2", True])
    def test_update_order_rejects_malformed_values(self, store, order):
        (entry,) = store.add_files([image_file("a.jpg")], start_order=1)

        with pytest.raises(ValidationError):
            store.update_order(entry.local_id, order)
        assert entry.display_order == 1

    def test_unknown_local_id(self, store):
        with pytest.raises(PendingImageNotFound):
            store.update_caption("temp-missing", "x")

    def test_move_up_and_down_swap_with_neighbour(self, store):
        a, b, c = store.add_files(
            [image_file("a.jpg"), image_file("b.jpg"), image_file("c.jpg")], start_order=1
        )

        store.move_up(c.local_id)
        assert [e.local_id for e in store.entries] == [a.local_id, c.local_id, b.local_id]

        store.move_down(a.local_id)
        assert [e.local_id for e in store.entries] == [c.local_id, a.local_id, b.local_id]
        assert [e.display_order for e in store.entries] == [1, 2, 3]

    def test_move_at_edges_is_a_no_op(self, store):
        a, b = store.add_files([image_file("a.jpg"), image_file("b.jpg")], start_order=1)

        store.move_up(a.local_id)
        store.move_down(b.local_id)

        assert [e.local_id for e in store.entries] == [a.local_id, b.local_id]

    def test_move_with_equal_orders(self, store):
        a, b = store.add_files([image_file("a.jpg"), image_file("b.jpg")], start_order=1)
        store.update_order(b.local_id, 1)

        store.move_up(b.local_id)

        assert [e.local_id for e in store.entries] == [b.local_id, a.local_id]


class TestRemoveAndClear:
    def test_removing_feature_promotes_first_by_order(self, store):
        a, b, c = store.add_files(
            [image_file("a.jpg"), image_file("b.jpg"), image_file("c.jpg")],
            start_order=1,
            make_first_feature=True,
        )
        store.update_order(c.local_id, 0)

        store.remove(a.local_id)

        assert c.is_feature is True
        assert b.is_feature is False

    def test_remove_without_promotion(self, store):
        a, b = store.add_files([image_file("a.jpg"), image_file("b.jpg")], make_first_feature=True)

        store.remove(a.local_id, promote=False)

        assert b.is_feature is False

    def test_clear_removes_snapshot(self, store, snapshot):
        store.add_files([image_file("a.jpg")])
        assert snapshot.exists()

        store.clear()

        assert len(store) == 0
        assert not snapshot.exists()


class TestLoad:
    def test_unfinished_uploads_are_dropped(self, snapshot):
        writer = PendingImageStore(snapshot)
        done, unfinished = writer.add_files([image_file("a.jpg"), image_file("b.jpg")], start_order=1)
        writer.on_upload_url_ready(done.local_id, "https://cdn.test/a.webp")

        reader = PendingImageStore(snapshot)
        restored = reader.load()

        assert [e.local_id for e in restored] == [done.local_id]
        assert [e.local_id for e in snapshot.load()] == [done.local_id]
        assert unfinished.local_id not in {e.local_id for e in reader}

    def test_without_snapshot(self):
        assert PendingImageStore().load() == []
