"""Realtime channel client: subscribe, send, unsubscribe."""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
import structlog

from rankshare.realtime.manager import ChannelManager, Handler

logger = structlog.get_logger()


def reveal_channel(ranking_id: str) -> str:
    """Name of the broadcast channel shared by the reveal viewers of a ranking."""
    return f"reveal:{ranking_id}"


class RealtimeClient:
    """Publishes through Redis and subscribes through the local ChannelManager.

    Delivery is at-most-once and carries no ordering guarantee across
    senders. A sender also receives its own messages.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        channels: ChannelManager,
        prefix: str = "realtime:",
    ) -> None:
        self.redis = redis_client
        self.channels = channels
        self.prefix = prefix

    def subscribe(self, channel: str, handler: Handler) -> str:
        """Attach a handler to a channel. Returns the subscription id."""
        return self.channels.subscribe(channel, handler)

    def unsubscribe(self, channel: str, subscription_id: str) -> bool:
        return self.channels.unsubscribe(channel, subscription_id)

    async def send(self, channel: str, event: str, payload: dict[str, Any]) -> int:
        """Broadcast an event on a channel. Returns the Redis receiver count."""
        message = json.dumps({"event": event, "payload": payload})
        receivers = await self.redis.publish(f"{self.prefix}{channel}", message)
        logger.debug("realtime_sent", channel=channel, event=event, receivers=receivers)
        return int(receivers)
