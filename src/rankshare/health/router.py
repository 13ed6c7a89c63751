"""Health, readiness, and version endpoints."""

import asyncio
from pathlib import Path

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from rankshare.backend import Backend, get_backend
from rankshare.database import get_session
from rankshare.redis_client import get_redis

router = APIRouter()


def _storage_writable(root: Path) -> bool:
    root.mkdir(parents=True, exist_ok=True)
    probe = root / ".ready-probe"
    probe.write_bytes(b"")
    probe.unlink()
    return True


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
    redis: Redis = Depends(get_redis),  # noqa: B008
    backend: Backend = Depends(get_backend),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: database, Redis, and the image storage directory.

    Also reports how many reveal viewers this process is serving.
    """
    checks: dict[str, object] = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await redis.ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    try:
        await asyncio.to_thread(_storage_writable, Path(backend.settings.storage_root))
        checks["storage"] = "ok"
    except OSError as exc:
        checks["storage"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks,
        "realtime": backend.channels.get_stats(),
    }


@router.get("/version")
async def version(backend: Backend = Depends(get_backend)) -> dict[str, str]:  # noqa: B008
    """Return API version and environment."""
    return {
        "version": backend.settings.app_version,
        "environment": backend.settings.environment,
    }
