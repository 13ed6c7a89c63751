"""Reveal viewer: local navigation kept in step with the other viewers.

Every local move is applied first and then broadcast on the ranking's
channel. Incoming moves from other viewers are clamped and applied as they
arrive; the last one received wins.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog

from rankshare.realtime.client import RealtimeClient, reveal_channel
from rankshare.reveal.state import INTRO, NavigationState, clamp_index, next_state, prev_state

logger = structlog.get_logger()

NAVIGATE_EVENT = "navigate"

Listener = Callable[[NavigationState], Awaitable[None]]


class RevealViewer:
    def __init__(
        self,
        ranking_id: str,
        realtime: RealtimeClient,
        client_id: str | None = None,
    ) -> None:
        self.ranking_id = ranking_id
        self.realtime = realtime
        self.client_id = client_id or str(uuid.uuid4())
        self.channel = reveal_channel(ranking_id)
        self.items: list[Any] = []
        self._state = INTRO
        self._subscription_id: str | None = None
        self._listeners: list[Listener] = []

    @property
    def state(self) -> NavigationState:
        return self._state

    @property
    def subscribed(self) -> bool:
        return self._subscription_id is not None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with the new state after every change. Returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def load(self, items: Sequence[Any]) -> NavigationState:
        """Replace the item list, go back to the intro and join the channel."""
        self.items = list(items)
        await self._set_state(INTRO)
        if self._subscription_id is None:
            self._subscription_id = self.realtime.subscribe(self.channel, self._on_message)
        return self._state

    async def next(self) -> NavigationState:
        return await self._navigate(next_state(self._state, len(self.items)))

    async def prev(self) -> NavigationState:
        return await self._navigate(prev_state(self._state, len(self.items)))

    async def close(self) -> None:
        """Leave the channel. The viewer ignores traffic from then on."""
        if self._subscription_id is not None:
            self.realtime.unsubscribe(self.channel, self._subscription_id)
            self._subscription_id = None
        self._listeners.clear()

    async def _navigate(self, target: NavigationState) -> NavigationState:
        if target == self._state:
            return self._state
        await self._set_state(target)
        await self._broadcast(target)
        return self._state

    async def _broadcast(self, state: NavigationState) -> None:
        payload = {**state.to_payload(), "senderId": self.client_id}
        try:
            await self.realtime.send(self.channel, NAVIGATE_EVENT, payload)
        except Exception:
            logger.exception("reveal_broadcast_failed", ranking_id=self.ranking_id, client_id=self.client_id)

    async def _on_message(self, message: dict[str, Any]) -> None:
        if message.get("event") != NAVIGATE_EVENT:
            return
        payload = message.get("payload")
        if not isinstance(payload, dict):
            return
        if payload.get("senderId") == self.client_id:
            return

        try:
            index = int(payload.get("currentIndex", 0))
        except (TypeError, ValueError):
            logger.warning("reveal_invalid_navigation", ranking_id=self.ranking_id)
            return

        incoming = NavigationState(
            current_index=clamp_index(index, len(self.items)),
            show_intro=bool(payload.get("showIntro", False)),
        )
        await self._set_state(incoming)

    async def _set_state(self, state: NavigationState) -> None:
        if state == self._state:
            return
        self._state = state
        for listener in list(self._listeners):
            await listener(state)
