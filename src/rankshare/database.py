"""Async SQLAlchemy engine and session management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from starlette.requests import HTTPConnection


def _engine_options(url: str) -> dict[str, Any]:
    """Pool options per backend. SQLite (tests, local dev) takes the driver defaults."""
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "connect_args": {"statement_cache_size": 0},
    }


class Database:
    """Owns one async engine and its session factory.

    Built by the application's composition root and handed to whatever needs
    it; nothing in the package keeps a module-level engine.
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, **_engine_options(url))
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_all(self) -> None:
        """Create every mapped table. Used by tests and local dev; production runs Alembic."""
        from rankshare.db.base import Base
        import rankshare.db.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        """Dispose of the engine's connection pool."""
        await self.engine.dispose()


def get_database(connection: HTTPConnection) -> Database:
    """Return the Database owned by the running application."""
    return connection.app.state.backend.database


async def get_session(connection: HTTPConnection) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session (FastAPI dependency)."""
    async with get_database(connection).session_factory() as session:
        yield session
