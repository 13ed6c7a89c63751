"""Observable session store on top of RankshareClient.

``loading`` stays True until the session is known, either from the initial
fetch or from an auth state change pushed by the client.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from rankshare.client.api import AuthEvent, RankshareClient, Session

logger = structlog.get_logger()

StoreListener = Callable[["SessionStore"], None]


class SessionStore:
    def __init__(self, client: RankshareClient) -> None:
        self.client = client
        self.session: Session | None = None
        self.loading = True
        self._mounted = False
        self._listeners: list[StoreListener] = []
        self._unsubscribe_auth: Callable[[], None] | None = None

    @property
    def signed_in(self) -> bool:
        return self.session is not None

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Call ``listener`` with the store after every change. Returns a remover."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        """Follow auth state changes and resolve the current session once."""
        self._mounted = True
        if self._unsubscribe_auth is None:
            self._unsubscribe_auth = self.client.on_change(self._on_auth_change)

        session, error = await self.client.get_session()
        if not self._mounted:
            return
        if error is not None:
            logger.warning("session_fetch_failed", error=error.message, status=error.status)
            session = None
        self._update(session)

    def close(self) -> None:
        """Stop following the client. Results that arrive later are dropped."""
        self._mounted = False
        if self._unsubscribe_auth is not None:
            self._unsubscribe_auth()
            self._unsubscribe_auth = None

    def _on_auth_change(self, event: AuthEvent, session: Session | None) -> None:
        if not self._mounted:
            return
        logger.debug("session_changed", auth_event=event)
        self._update(session)

    def _update(self, session: Session | None) -> None:
        self.session = session
        self.loading = False
        for listener in list(self._listeners):
            listener(self)
