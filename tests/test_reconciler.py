"""
Tests for the gallery reconciler: display order, feature selection and the save payload.
"""
import random

import pytest

from builder_cms.gallery.errors import ImageNotFound, UploadIncompleteError
from builder_cms.gallery.models import GalleryImage, PendingImage
from builder_cms.gallery.reconciler import (
    build_save_payload,
    enforce_single_feature_on_load,
    ensure_feature,
    feature_image,
    find_image,
    merge_for_display,
    next_display_order,
    set_feature,
)


def saved(image_id, order, feature=False):
    return GalleryImage(
        id=image_id,
        project_id=7,
        image_url=f"https://cdn.test/saved-{image_id}.webp",
        display_order=order,
        is_feature=feature,
    )


def pending(local_id, order, feature=False, url="auto"):
    if url == "auto":
        url = f"https://cdn.test/{local_id}.webp"
    return PendingImage(
        local_id=local_id,
        upload_url=url,
        uploaded=url is not None,
        caption=local_id,
        display_order=order,
        is_feature=feature,
    )


def feature_count(*collections):
    return sum(1 for images in collections for img in images if img.is_feature)


class TestNextDisplayOrder:
    """next_display_order over saved and pending images."""

    def test_empty_gallery_starts_at_one(self):
        assert next_display_order([], []) == 1

    def test_uses_highest_order_of_either_collection(self):
        assert next_display_order([saved(1, 4)], [pending("temp-a", 9)]) == 10
        assert next_display_order([saved(1, 12)], [pending("temp-a", 3)]) == 13

    def test_none_order_counts_as_zero(self):
        image = saved(1, 0)
        image.display_order = None
        assert next_display_order([image], []) == 1

    def test_strictly_greater_than_every_order(self):
        rng = random.Random(42)
        for _ in range(50):
            persisted = [saved(i, rng.randint(0, 30)) for i in range(rng.randint(0, 5))]
            staged = [pending(f"temp-{i}", rng.randint(0, 30)) for i in range(rng.randint(0, 5))]
            result = next_display_order(persisted, staged)
            assert all(result > img.display_order for img in persisted + staged)


class TestSetFeature:
    """set_feature keeps exactly one feature across both collections."""

    def test_pending_target_clears_saved_feature(self):
        persisted = [saved(1, 1, feature=True)]
        staged = [pending("temp-a", 2)]

        target = set_feature("temp-a", persisted, staged)

        assert target is staged[0]
        assert staged[0].is_feature is True
        assert persisted[0].is_feature is False

    def test_saved_target_by_integer_id(self):
        persisted = [saved(1, 1), saved(2, 2, feature=True)]
        staged = [pending("temp-a", 3, feature=True)]

        set_feature(1, persisted, staged)

        assert [img.is_feature for img in persisted] == [True, False]
        assert staged[0].is_feature is False

    def test_unknown_id_raises(self):
        with pytest.raises(ImageNotFound):
            set_feature("temp-missing", [saved(1, 1)], [])
        with pytest.raises(KeyError):
            find_image(99, [saved(1, 1)], [])

    def test_string_id_never_matches_saved_image(self):
        with pytest.raises(ImageNotFound):
            find_image("1", [saved(1, 1)], [])


class TestFeatureRepair:
    """Invariant repair on load and after removals."""

    def test_load_without_feature_promotes_first_by_order(self):
        images = [saved(1, 3), saved(2, 1), saved(3, 2)]

        ordered = enforce_single_feature_on_load(images)

        assert [img.id for img in ordered] == [2, 3, 1]
        assert ordered[0].is_feature is True
        assert feature_count(ordered) == 1

    def test_load_with_several_features_keeps_first_by_order(self):
        images = [saved(1, 2, feature=True), saved(2, 1, feature=True), saved(3, 3, feature=True)]

        ordered = enforce_single_feature_on_load(images)

        assert feature_image(ordered).id == 2
        assert feature_count(ordered) == 1

    def test_load_of_empty_gallery(self):
        assert enforce_single_feature_on_load([]) == []

    def test_ensure_feature_spans_both_collections(self):
        persisted = [saved(1, 5)]
        staged = [pending("temp-a", 2), pending("temp-b", 8)]

        chosen = ensure_feature(persisted, staged)

        assert chosen is staged[0]
        assert feature_count(persisted, staged) == 1

    def test_ensure_feature_on_empty_set(self):
        assert ensure_feature([], []) is None


class TestMergeForDisplay:
    def test_keys_and_order(self):
        items = merge_for_display([saved(4, 2, feature=True)], [pending("temp-a", 1, url=None)])

        assert [item.key for item in items] == ["temp-a", "existing-4"]
        assert items[0].source == "pending"
        assert items[0].uploaded is False
        assert items[1].is_feature is True


class TestBuildSavePayload:
    """build_save_payload refuses incomplete uploads and orders records."""

    def test_records_follow_display_order(self):
        staged = [pending("temp-b", 3), pending("temp-a", 2, feature=True)]

        records = build_save_payload([saved(1, 1)], staged, project_id=7)

        assert [r.image_url for r in records] == [
            "https://cdn.test/temp-a.webp",
            "https://cdn.test/temp-b.webp",
        ]
        assert [r.display_order for r in records] == [2, 3]
        assert [r.is_feature for r in records] == [True, False]
        assert all(r.project_id == 7 for r in records)

    def test_unuploaded_entry_blocks_payload(self):
        staged = [pending("temp-a", 1), pending("temp-b", 2, url=None)]

        with pytest.raises(UploadIncompleteError) as exc_info:
            build_save_payload([], staged, project_id=7)

        assert exc_info.value.pending_ids == ["temp-b"]

    def test_first_image_of_empty_gallery_becomes_feature(self):
        staged = [pending("temp-a", 1), pending("temp-b", 2)]

        records = build_save_payload([], staged, project_id=7)

        assert [r.is_feature for r in records] == [True, False]

    def test_saved_feature_is_kept(self):
        persisted = [saved(1, 1, feature=True)]

        records = build_save_payload(persisted, [pending("temp-a", 2)], project_id=7)

        assert records[0].is_feature is False
        assert persisted[0].is_feature is True
