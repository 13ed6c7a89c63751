"""Shared test fixtures."""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rankshare.backend import Backend
from rankshare.config import Settings, get_settings
from rankshare.database import Database
from rankshare.main import create_app
from rankshare.realtime.bridge import PubSubBridge
from rankshare.realtime.client import RealtimeClient
from rankshare.realtime.manager import ChannelManager
from rankshare.storage.blob import LocalBlobStore


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the app uses.

    ``publish`` hands the message straight to ``subscriber`` (normally the
    PubSubBridge), the way a pattern subscription would deliver it.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expiry: dict[str, float] = {}
        self.published: list[tuple[str, str]] = []
        self.subscriber: Callable[[dict[str, Any]], Awaitable[int]] | None = None

    def _alive(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.time():
            self.data.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.data

    async def get(self, key: str) -> str | None:
        return self.data.get(key) if self._alive(key) else None

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self.data[key] = str(value)
        if ex is not None:
            self.expiry[key] = time.time() + ex
        return True

    async def incr(self, key: str) -> int:
        value = int(self.data.get(key, "0")) + 1 if self._alive(key) else 1
        self.data[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        if not self._alive(key):
            return False
        self.expiry[key] = time.time() + seconds
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.expiry.pop(key, None)
        return removed

    async def ping(self) -> bool:
        return True

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        if self.subscriber is None:
            return 0
        await self.subscriber({"type": "pmessage", "pattern": None, "channel": channel, "data": message})
        return 1

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    async def aclose(self) -> None:
        return None


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.commands: list[tuple[str, tuple[Any, ...]]] = []

    def incr(self, key: str) -> FakePipeline:
        self.commands.append(("incr", (key,)))
        return self

    def expire(self, key: str, seconds: int) -> FakePipeline:
        self.commands.append(("expire", (key, seconds)))
        return self

    async def execute(self) -> list[Any]:
        results = [await getattr(self.redis, name)(*args) for name, args in self.commands]
        self.commands.clear()
        return results


def build_backend(settings: Settings, email: Any) -> Backend:
    """Backend wired to FakeRedis with the bridge receiving every publish."""
    redis = FakeRedis()
    channels = ChannelManager()
    bridge = PubSubBridge(redis, channels, prefix=settings.realtime_channel_prefix)  # type: ignore[arg-type]
    redis.subscriber = bridge.handle_message
    return Backend(
        settings=settings,
        database=Database(settings.database_url),
        redis=redis,  # type: ignore[arg-type]
        blob_store=LocalBlobStore(settings.storage_root, settings.storage_public_base_url),
        email=email,
        channels=channels,
        realtime=RealtimeClient(redis, channels, prefix=settings.realtime_channel_prefix),  # type: ignore[arg-type]
        bridge=bridge,
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file and storage directory."""
    return get_settings().model_copy(
        update={
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'rankshare.db'}",
            "rate_limit_enabled": False,
            "storage_root": str(tmp_path / "storage"),
            "storage_public_base_url": "http://test",
        }
    )


@pytest.fixture
def mock_email_service() -> MagicMock:
    """Email service that records calls instead of sending."""
    mock_service = MagicMock()
    mock_service.send_template = AsyncMock(return_value=True)
    mock_service.send_email = AsyncMock(return_value=True)
    return mock_service


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def realtime(fake_redis: FakeRedis) -> RealtimeClient:
    """RealtimeClient whose publishes loop back through a PubSubBridge."""
    channels = ChannelManager()
    bridge = PubSubBridge(fake_redis, channels)  # type: ignore[arg-type]
    fake_redis.subscriber = bridge.handle_message
    return RealtimeClient(fake_redis, channels)  # type: ignore[arg-type]


@pytest_asyncio.fixture
async def backend(settings: Settings, mock_email_service: MagicMock) -> AsyncGenerator[Backend, None]:
    """Backend with freshly created tables."""
    b = build_backend(settings, mock_email_service)
    await b.database.create_all()
    yield b
    await b.database.dispose()


@pytest_asyncio.fixture
async def client(backend: Backend) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client bound to the test backend."""
    app = create_app(backend=backend)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def login_token_from(mock_email_service: MagicMock) -> str:
    """Pull the one-time token out of the last sign-in email."""
    context = mock_email_service.send_template.call_args.kwargs["context"]
    return parse_qs(urlparse(context["link_url"]).query)["token"][0]


@pytest.fixture
def sign_in(client: AsyncClient, mock_email_service: MagicMock) -> Callable[[str], Awaitable[dict[str, Any]]]:
    """Sign in through the email-link flow. Returns the token response plus ready headers."""

    async def _sign_in(email: str = "owner@example.com") -> dict[str, Any]:
        response = await client.post("/api/v1/auth/magic-link", json={"email": email})
        assert response.status_code == 200
        response = await client.post(
            "/api/v1/auth/magic-link/verify",
            json={"token": login_token_from(mock_email_service)},
        )
        assert response.status_code == 200, response.text
        data = response.json()
        data["headers"] = {"Authorization": f"Bearer {data['access_token']}"}
        return data

    return _sign_in


@pytest.fixture
def sync_backend(settings: Settings, mock_email_service: MagicMock) -> Backend:
    """Backend for Starlette's TestClient; tables are created by the app lifespan."""
    return build_backend(settings.model_copy(update={"database_create_all": True}), mock_email_service)


@pytest.fixture
def last_login_token(mock_email_service: MagicMock) -> Callable[[], str]:
    """Callable returning the token of the most recent sign-in email."""
    return lambda: login_token_from(mock_email_service)
