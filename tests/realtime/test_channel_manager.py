"""Tests for the ChannelManager."""

from __future__ import annotations

from typing import Any

import pytest

from rankshare.realtime.manager import ChannelManager, is_valid_channel


class Recorder:
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)


async def failing_handler(message: dict[str, Any]) -> None:
    raise RuntimeError("handler gone")


class TestChannelNames:
    @pytest.mark.parametrize("channel", ["reveal:abc", "reveal:3f2c-11aa-9b", "reveal:" + "a" * 64])
    def test_valid(self, channel: str):
        assert is_valid_channel(channel)

    @pytest.mark.parametrize("channel", ["", "reveal:", "other:abc", "reveal:a b", "reveal:*", "reveal:" + "a" * 65])
    def test_invalid(self, channel: str):
        assert not is_valid_channel(channel)

    def test_subscribe_rejects_invalid_channel(self):
        with pytest.raises(ValueError, match="Invalid channel"):
            ChannelManager().subscribe("reveal:*", Recorder())


class TestSubscriptions:
    async def test_dispatch_reaches_every_handler_on_channel(self):
        manager = ChannelManager()
        first, second, other = Recorder(), Recorder(), Recorder()
        manager.subscribe("reveal:r1", first)
        manager.subscribe("reveal:r1", second)
        manager.subscribe("reveal:r2", other)

        delivered = await manager.dispatch("reveal:r1", {"event": "navigate"})

        assert delivered == 2
        assert first.messages == [{"event": "navigate"}]
        assert second.messages == [{"event": "navigate"}]
        assert other.messages == []

    async def test_unsubscribe_stops_delivery(self):
        manager = ChannelManager()
        recorder = Recorder()
        sub_id = manager.subscribe("reveal:r1", recorder)

        assert manager.unsubscribe("reveal:r1", sub_id) is True
        assert manager.unsubscribe("reveal:r1", sub_id) is False
        assert await manager.dispatch("reveal:r1", {"event": "navigate"}) == 0
        assert recorder.messages == []
        assert manager.subscription_count == 0

    async def test_failing_handler_is_dropped(self):
        manager = ChannelManager()
        recorder = Recorder()
        manager.subscribe("reveal:r1", failing_handler)
        manager.subscribe("reveal:r1", recorder)

        assert await manager.dispatch("reveal:r1", {"n": 1}) == 1
        assert manager.subscription_count == 1
        assert await manager.dispatch("reveal:r1", {"n": 2}) == 1
        assert len(recorder.messages) == 2

    async def test_dispatch_to_empty_channel(self):
        assert await ChannelManager().dispatch("reveal:nobody", {}) == 0

    def test_stats(self):
        manager = ChannelManager()
        manager.subscribe("reveal:r1", Recorder())
        manager.subscribe("reveal:r1", Recorder())
        manager.subscribe("reveal:r2", Recorder())
        assert manager.get_stats() == {
            "total_subscriptions": 3,
            "channels": {"reveal:r1": 2, "reveal:r2": 1},
        }
