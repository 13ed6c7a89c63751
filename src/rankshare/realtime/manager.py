"""Channel subscription manager.

Tracks the in-process handlers subscribed to each realtime channel and fans
incoming messages out to them.
"""

from __future__ import annotations

import re
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger()

Handler = Callable[[dict[str, Any]], Awaitable[None]]

CHANNEL_PATTERN = re.compile(r"^reveal:[A-Za-z0-9-]{1,64}$")


def is_valid_channel(channel: str) -> bool:
    return CHANNEL_PATTERN.match(channel) is not None


class ChannelManager:
    """Manages handler subscriptions per channel.

    Safe for asyncio via single-threaded event loop.
    """

    def __init__(self) -> None:
        self._channels: dict[str, dict[str, Handler]] = defaultdict(dict)  # channel -> {sub_id: handler}

    @property
    def subscription_count(self) -> int:
        return sum(len(subs) for subs in self._channels.values())

    def subscribe(self, channel: str, handler: Handler) -> str:
        """Register a handler on a channel. Returns the subscription id.

        Raises:
            ValueError: If the channel name is not a known channel shape.
        """
        if not is_valid_channel(channel):
            msg = f"Invalid channel: {channel}"
            raise ValueError(msg)

        subscription_id = str(uuid.uuid4())
        self._channels[channel][subscription_id] = handler
        logger.debug("channel_subscribed", channel=channel, subscription_id=subscription_id)
        return subscription_id

    def unsubscribe(self, channel: str, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if it was not registered."""
        subs = self._channels.get(channel)
        if not subs or subscription_id not in subs:
            return False
        del subs[subscription_id]
        if not subs:
            del self._channels[channel]
        logger.debug("channel_unsubscribed", channel=channel, subscription_id=subscription_id)
        return True

    async def dispatch(self, channel: str, message: dict[str, Any]) -> int:
        """Deliver a message to every handler on a channel.

        Returns the number of handlers that accepted it. Handlers that raise
        are dropped.
        """
        subs = list(self._channels.get(channel, {}).items())
        if not subs:
            return 0

        delivered = 0
        failed: list[str] = []
        for subscription_id, handler in subs:
            try:
                await handler(message)
                delivered += 1
            except Exception:
                logger.exception("channel_handler_failed", channel=channel, subscription_id=subscription_id)
                failed.append(subscription_id)

        for subscription_id in failed:
            self.unsubscribe(channel, subscription_id)

        return delivered

    def get_stats(self) -> dict[str, Any]:
        """Get subscription statistics."""
        return {
            "total_subscriptions": self.subscription_count,
            "channels": {ch: len(subs) for ch, subs in self._channels.items() if subs},
        }
