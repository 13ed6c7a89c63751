"""Blob storage adapters.

Objects live in named buckets and are addressed by a slash-separated path.
``LocalBlobStore`` keeps them on disk below ``root/{bucket}/`` and the app
serves that directory under ``/storage``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import structlog

logger = structlog.get_logger()


class BlobStoreError(Exception):
    """Base class for blob storage failures."""


class BlobExistsError(BlobStoreError):
    """An object already exists at the path and overwriting was not allowed."""


@dataclass(frozen=True)
class ObjectRef:
    bucket: str
    path: str
    public_url: str


class BlobStore(ABC):
    """Abstract object store."""

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str | None = None,
        *,
        no_overwrite: bool = True,
    ) -> ObjectRef:
        """Store ``data`` at ``bucket/path`` and return its reference."""
        ...

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """Resolve the publicly readable URL of an object."""
        ...


class LocalBlobStore(BlobStore):
    """Filesystem-backed store with exclusive-create uploads."""

    def __init__(self, root: str | Path, public_base_url: str) -> None:
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        target = (self.root / bucket / path).resolve()
        if not target.is_relative_to(self.root / bucket):
            msg = f"Object path escapes bucket: {path}"
            raise BlobStoreError(msg)
        return target

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/storage/{bucket}/{path}"

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str | None = None,
        *,
        no_overwrite: bool = True,
    ) -> ObjectRef:
        target = self._resolve(bucket, path)
        mode = "xb" if no_overwrite else "wb"

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open(mode) as out:
                out.write(data)

        try:
            await asyncio.to_thread(_write)
        except FileExistsError as e:
            msg = f"Object already exists: {bucket}/{path}"
            raise BlobExistsError(msg) from e
        except OSError as e:
            msg = f"Could not store {bucket}/{path}: {e}"
            raise BlobStoreError(msg) from e

        logger.debug("blob_stored", bucket=bucket, path=path, size=len(data), content_type=content_type)
        return ObjectRef(bucket=bucket, path=path, public_url=self.public_url(bucket, path))
