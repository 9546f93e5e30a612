"""
Gallery reconciler.
Merges persisted gallery images with pending ones, computes display order, and
keeps exactly one feature image across both collections.

Functions rely only on `display_order` and `is_feature` attributes, so they also
work on SQLAlchemy rows.
"""
import logging
from itertools import chain
from typing import Iterable, Optional, Sequence, Union

from builder_cms.gallery.errors import ImageNotFound, UploadIncompleteError
from builder_cms.gallery.models import AnyImage, GalleryImage, GalleryItem, PendingImage
from builder_cms.schemas import ProjectGalleryImageCreate

logger = logging.getLogger(__name__)

ImageId = Union[int, str]


def _order(image) -> int:
    return image.display_order if image.display_order is not None else 0


def sort_by_order(images: Iterable) -> list:
    """Stable sort by display_order; None counts as 0."""
    return sorted(images, key=_order)


def next_display_order(persisted: Sequence, pending: Sequence) -> int:
    """Return one more than the highest display order in either collection (empty max is 0)."""
    orders = [_order(img) for img in chain(persisted, pending)]
    return max(orders, default=0) + 1


def find_image(
    image_id: ImageId,
    persisted: Sequence[GalleryImage],
    pending: Sequence[PendingImage],
) -> AnyImage:
    """
    Look up an image by id.
    Integer ids address persisted images, string ids address pending local ids.

    Raises:
        ImageNotFound: If no image matches
    """
    if isinstance(image_id, str):
        for img in pending:
            if img.local_id == image_id:
                return img
    else:
        for img in persisted:
            if img.id == image_id:
                return img
    raise ImageNotFound(image_id)


def set_feature(
    image_id: ImageId,
    persisted: Sequence[GalleryImage],
    pending: Sequence[PendingImage],
) -> AnyImage:
    """Mark exactly the target as feature, clearing every other image in both collections."""
    target = find_image(image_id, persisted, pending)
    for img in chain(persisted, pending):
        img.is_feature = img is target
    return target


def feature_image(persisted: Sequence, pending: Sequence = ()) -> Optional[AnyImage]:
    return next((img for img in chain(persisted, pending) if img.is_feature), None)


def _single_feature(ordered: list) -> Optional[object]:
    if not ordered:
        return None

    features = [img for img in ordered if img.is_feature]
    if not features:
        ordered[0].is_feature = True
        return ordered[0]

    for extra in features[1:]:
        extra.is_feature = False
    return features[0]


def enforce_single_feature_on_load(images: Iterable) -> list:
    """
    Repair a freshly loaded set: sort by display order and make sure exactly one
    image is the feature (the first by order when none is flagged).
    """
    ordered = sort_by_order(images)
    had_feature = any(img.is_feature for img in ordered)
    chosen = _single_feature(ordered)
    if chosen is not None and not had_feature:
        logger.info(f"No feature image in loaded gallery, promoted image {getattr(chosen, 'id', '?')}")
    return ordered


def ensure_feature(persisted: Sequence, pending: Sequence = ()) -> Optional[AnyImage]:
    """
    Invariant repair over the combined set after an add or remove.
    Returns the feature image, or None when both collections are empty.
    """
    return _single_feature(sort_by_order(chain(persisted, pending)))


def merge_for_display(
    persisted: Sequence[GalleryImage],
    pending: Sequence[PendingImage],
) -> list[GalleryItem]:
    items = [
        GalleryItem(
            key=f"existing-{img.id}",
            source="saved",
            image_url=img.image_url,
            caption=img.caption,
            display_order=_order(img),
            is_feature=img.is_feature,
        )
        for img in persisted
    ]
    items.extend(
        GalleryItem(
            key=img.local_id,
            source="pending",
            image_url=img.upload_url,
            caption=img.caption,
            display_order=_order(img),
            is_feature=img.is_feature,
            uploaded=img.uploaded,
        )
        for img in pending
    )
    return sort_by_order(items)


def build_save_payload(
    persisted: Sequence[GalleryImage],
    pending: Sequence[PendingImage],
    project_id: int,
) -> list[ProjectGalleryImageCreate]:
    """
    Build one creation record per pending image, in display order.

    The single-feature invariant is enforced on the combined set first.

    Raises:
        UploadIncompleteError: If any pending image has no resolved upload URL;
            nothing is dropped silently
    """
    not_ready = [img.local_id for img in pending if not img.uploaded or not img.upload_url]
    if not_ready:
        raise UploadIncompleteError(not_ready)

    ensure_feature(persisted, pending)

    return [
        ProjectGalleryImageCreate(
            project_id=project_id,
            image_url=img.upload_url,
            caption=img.caption,
            display_order=_order(img),
            is_feature=img.is_feature,
        )
        for img in sort_by_order(pending)
    ]
