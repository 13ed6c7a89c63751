"""Redis connection pool."""

from __future__ import annotations

import redis.asyncio as redis
from starlette.requests import HTTPConnection


def create_redis(url: str) -> redis.Redis:
    """Build a Redis client backed by its own connection pool."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


def get_redis(connection: HTTPConnection) -> redis.Redis:
    """Get the application's Redis client (FastAPI dependency)."""
    return connection.app.state.backend.redis
