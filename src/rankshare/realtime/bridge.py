"""Bridges Redis pub/sub to in-process channel subscribers.

Every process pattern-subscribes to the realtime prefix, so a message sent by
any process reaches the subscribers of all of them.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import redis.asyncio as aioredis
import structlog

from rankshare.realtime.manager import ChannelManager

logger = structlog.get_logger()


class PubSubBridge:
    """Subscribes to Redis pub/sub and hands messages to the ChannelManager."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        channels: ChannelManager,
        prefix: str = "realtime:",
    ) -> None:
        self.redis = redis_client
        self.channels = channels
        self.prefix = prefix
        self._running = False

    async def handle_message(self, message: dict[str, Any]) -> int:
        """Route one raw pub/sub message. Returns the number of handlers reached."""
        redis_channel = message.get("channel", "")
        if isinstance(redis_channel, bytes):
            redis_channel = redis_channel.decode()
        if not redis_channel.startswith(self.prefix):
            return 0

        try:
            data = message.get("data", b"")
            if isinstance(data, bytes):
                data = data.decode()
            payload = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return 0

        if not isinstance(payload, dict):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return 0

        channel = redis_channel[len(self.prefix):]
        sent = await self.channels.dispatch(channel, payload)
        if sent > 0:
            logger.debug("pubsub_dispatched", channel=channel, event=payload.get("event"), recipients=sent)
        return sent

    async def start(self) -> None:
        """Start listening to Redis pub/sub."""
        self._running = True
        pubsub = self.redis.pubsub()
        pattern = f"{self.prefix}*"
        await pubsub.psubscribe(pattern)

        logger.info("pubsub_bridge_started", patterns=[pattern])

        try:
            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue
                await self.handle_message(message)

        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.punsubscribe()
            await pubsub.close()
            logger.info("pubsub_bridge_stopped")

    async def stop(self) -> None:
        """Signal the bridge to stop."""
        self._running = False
