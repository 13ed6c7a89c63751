"""Item image uploads."""

from __future__ import annotations

import re
import time

import structlog

from rankshare.storage.blob import BlobStore, BlobStoreError

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class ImageUploadError(Exception):
    """The image could not be stored. The item write must not go ahead."""


def sanitize_filename(filename: str) -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with ``_``."""
    return _UNSAFE_CHARS.sub("_", filename) or "_"


def build_object_path(ranking_id: str, filename: str, now_ms: int | None = None) -> str:
    """Object path ``{ranking_id}/{millis}-{sanitized filename}``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{ranking_id}/{now_ms}-{sanitize_filename(filename)}"


def validate_image(
    data: bytes,
    content_type: str | None,
    *,
    max_bytes: int,
    allowed_types: list[str],
) -> None:
    """
    Check size and declared type before anything is stored.

    Raises:
        ImageUploadError: If the file is empty, too large, or of a disallowed type.
    """
    if not data:
        msg = "Image file is empty"
        raise ImageUploadError(msg)
    if len(data) > max_bytes:
        msg = f"Image too large. Max size is {max_bytes // (1024 * 1024)}MB."
        raise ImageUploadError(msg)
    if content_type is not None and content_type.lower() not in allowed_types:
        msg = f"Unsupported image type: {content_type}"
        raise ImageUploadError(msg)


async def upload_item_image(
    store: BlobStore,
    bucket: str,
    ranking_id: str,
    filename: str,
    data: bytes,
    content_type: str | None = None,
    now_ms: int | None = None,
) -> str:
    """
    Store an item image and return its public URL.

    Raises:
        ImageUploadError: On any storage failure.
    """
    path = build_object_path(ranking_id, filename, now_ms)
    try:
        ref = await store.upload(bucket, path, data, content_type, no_overwrite=True)
    except BlobStoreError as e:
        logger.warning("image_upload_failed", ranking_id=ranking_id, path=path, error=str(e))
        msg = "Image upload failed"
        raise ImageUploadError(msg) from e

    logger.info("image_uploaded", ranking_id=ranking_id, path=path)
    return ref.public_url
