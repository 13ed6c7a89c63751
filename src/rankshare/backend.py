"""Composition root: every external collaborator the service talks to.

One ``Backend`` is built per application and stored on ``app.state.backend``.
Request handlers reach it through the dependency functions below.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field

import redis.asyncio as aioredis
import structlog
from starlette.requests import HTTPConnection

from rankshare.config import Settings
from rankshare.database import Database
from rankshare.email.service import EmailService, create_provider
from rankshare.rankings.reorder import ReorderGuard
from rankshare.realtime.bridge import PubSubBridge
from rankshare.realtime.client import RealtimeClient
from rankshare.realtime.manager import ChannelManager
from rankshare.redis_client import create_redis
from rankshare.storage.blob import BlobStore, LocalBlobStore

logger = structlog.get_logger()


@dataclass
class Backend:
    settings: Settings
    database: Database
    redis: aioredis.Redis
    blob_store: BlobStore
    email: EmailService
    channels: ChannelManager
    realtime: RealtimeClient
    bridge: PubSubBridge
    reorder_guard: ReorderGuard = field(default_factory=ReorderGuard)
    _bridge_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> Backend:
        """Build every adapter from configuration. Opens no connections yet."""
        redis = create_redis(settings.redis_url)
        channels = ChannelManager()
        return cls(
            settings=settings,
            database=Database(settings.database_url, echo=settings.debug),
            redis=redis,
            blob_store=LocalBlobStore(settings.storage_root, settings.storage_public_base_url),
            email=EmailService(
                create_provider(settings),
                redis=redis,
                rate_limit_max=settings.email_rate_limit_per_hour,
            ),
            channels=channels,
            realtime=RealtimeClient(redis, channels, prefix=settings.realtime_channel_prefix),
            bridge=PubSubBridge(redis, channels, prefix=settings.realtime_channel_prefix),
        )

    async def start(self) -> None:
        """Start the Redis pub/sub -> channel bridge."""
        if self._bridge_task is None:
            self._bridge_task = asyncio.create_task(self.bridge.start())

    async def close(self) -> None:
        """Stop the bridge and release connections."""
        if self._bridge_task is not None:
            await self.bridge.stop()
            self._bridge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._bridge_task
            self._bridge_task = None
        await self.database.dispose()
        await self.redis.aclose()
        logger.info("backend_closed")


def get_backend(connection: HTTPConnection) -> Backend:
    return connection.app.state.backend


def get_blob_store(connection: HTTPConnection) -> BlobStore:
    return connection.app.state.backend.blob_store


def get_reorder_guard(connection: HTTPConnection) -> ReorderGuard:
    return connection.app.state.backend.reorder_guard
