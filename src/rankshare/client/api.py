"""
Async client for the Rankshare HTTP API.

Calls return ``(data, error)`` pairs instead of raising for remote failures.
The client keeps the signed-in session in memory and tells ``on_change``
listeners about sign-in, token refresh and sign-out.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, TypeVar

import httpx
import structlog

logger = structlog.get_logger()

T = TypeVar("T")

AuthEvent = Literal["SIGNED_IN", "TOKEN_REFRESHED", "SIGNED_OUT"]
AuthListener = Callable[[AuthEvent, "Session | None"], None]

SESSION_MISSING = "auth session missing"
EXPIRY_MARGIN_SECONDS = 30


@dataclass(frozen=True)
class ApiError:
    message: str
    status: int | None = None


@dataclass
class Session:
    access_token: str
    refresh_token: str
    expires_at: float
    user: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return self.user.get("id")

    @property
    def expired(self) -> bool:
        return time.time() >= self.expires_at - EXPIRY_MARGIN_SECONDS

    @classmethod
    def from_token_response(cls, data: dict[str, Any]) -> Session:
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=time.time() + int(data.get("expires_in", 3600)),
            user=data.get("user") or {},
        )


Result = tuple[T | None, ApiError | None]


class RankshareClient:
    """Thin async wrapper around the REST endpoints."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_http = http is None
        self._session: Session | None = None
        self._listeners: list[AuthListener] = []

    async def __aenter__(self) -> RankshareClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def session(self) -> Session | None:
        return self._session

    # ------------------------------------------------------------------
    # Auth state
    # ------------------------------------------------------------------

    def on_change(self, listener: AuthListener) -> Callable[[], None]:
        """Register an auth state listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_session(self, session: Session | None, event: AuthEvent) -> None:
        self._session = session
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception:
                logger.exception("auth_listener_failed", auth_event=event)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        authed: bool = False,
        **kwargs: Any,
    ) -> Result[Any]:
        headers = kwargs.pop("headers", {})
        if authed:
            if self._session is None:
                return None, ApiError("Not signed in", status=401)
            headers["Authorization"] = f"Bearer {self._session.access_token}"

        try:
            response = await self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("api_request_failed", method=method, path=path, error=str(e))
            return None, ApiError(str(e) or type(e).__name__)

        if response.is_error:
            try:
                detail = response.json().get("detail", response.reason_phrase)
            except ValueError:
                detail = response.text or response.reason_phrase
            return None, ApiError(str(detail), status=response.status_code)

        if response.status_code == 204 or not response.content:
            return None, None
        return response.json(), None

    async def _start_session(self, data: dict[str, Any] | None, error: ApiError | None) -> Result[Session]:
        if error is not None or data is None:
            return None, error
        session = Session.from_token_response(data)
        self._set_session(session, "SIGNED_IN")
        return session, None

    # ------------------------------------------------------------------
    # Auth verbs
    # ------------------------------------------------------------------

    async def sign_in_with_link(self, email: str) -> ApiError | None:
        """Ask the server to email a one-time sign-in link."""
        _, error = await self._request("POST", "/api/v1/auth/magic-link", json={"email": email})
        return error

    async def verify_link(self, token: str) -> Result[Session]:
        data, error = await self._request("POST", "/api/v1/auth/magic-link/verify", json={"token": token})
        return await self._start_session(data, error)

    async def sign_in_with_password(self, email: str, password: str) -> Result[Session]:
        data, error = await self._request(
            "POST", "/api/v1/auth/login", json={"email": email, "password": password}
        )
        return await self._start_session(data, error)

    async def refresh_session(self) -> Result[Session]:
        if self._session is None:
            return None, ApiError("Auth session missing", status=401)
        data, error = await self._request(
            "POST", "/api/v1/auth/refresh", json={"refresh_token": self._session.refresh_token}
        )
        if error is not None:
            if error.status == 401:
                self._set_session(None, "SIGNED_OUT")
            return None, error
        session = Session.from_token_response(data)
        self._set_session(session, "TOKEN_REFRESHED")
        return session, None

    async def get_session(self) -> Result[Session]:
        """The current session, refreshed first if the access token is about to expire."""
        if self._session is None:
            return None, None
        if self._session.expired:
            return await self.refresh_session()
        return self._session, None

    async def get_user(self) -> Result[dict[str, Any]]:
        """Ask the server who the access token belongs to."""
        return await self._request("GET", "/api/v1/auth/session", authed=True)

    async def sign_out(self, scope: Literal["local", "global"] = "local") -> ApiError | None:
        """
        End the session.

        A server answer of "Auth session missing" means the session is already
        gone; the local copy is dropped and no error is reported.
        """
        if self._session is None:
            return None
        _, error = await self._request(
            "POST",
            "/api/v1/auth/logout",
            json={"refresh_token": self._session.refresh_token, "scope": scope},
        )
        if error is not None and SESSION_MISSING not in error.message.lower():
            logger.warning("sign_out_failed", status=error.status, error=error.message)
            return error
        self._set_session(None, "SIGNED_OUT")
        return None

    async def update_password(self, password: str, password_confirm: str) -> ApiError | None:
        if password != password_confirm:
            return ApiError("Passwords do not match")
        _, error = await self._request(
            "PUT",
            "/api/v1/auth/password",
            authed=True,
            json={"password": password, "password_confirm": password_confirm},
        )
        return error

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    async def list_rankings(self) -> Result[list[dict[str, Any]]]:
        data, error = await self._request("GET", "/api/v1/rankings", authed=self._session is not None)
        return (data["rankings"], None) if data is not None else (None, error)

    async def get_ranking(self, ranking_id: str, *, descending: bool = False) -> Result[dict[str, Any]]:
        return await self._request(
            "GET",
            f"/api/v1/rankings/{ranking_id}",
            authed=self._session is not None,
            params={"order": "desc" if descending else "asc"},
        )

    async def create_ranking(
        self, title: str, description: str | None = None, is_public: bool = True
    ) -> Result[dict[str, Any]]:
        return await self._request(
            "POST",
            "/api/v1/rankings",
            authed=True,
            json={"title": title, "description": description, "is_public": is_public},
        )

    async def update_ranking(
        self, ranking_id: str, title: str, description: str | None = None
    ) -> Result[dict[str, Any]]:
        return await self._request(
            "PATCH",
            f"/api/v1/rankings/{ranking_id}",
            authed=True,
            json={"title": title, "description": description},
        )

    async def get_next_rank(self, ranking_id: str) -> Result[int]:
        data, error = await self._request("GET", f"/api/v1/rankings/{ranking_id}/items/next-rank", authed=True)
        return (data["next_rank"], None) if data is not None else (None, error)

    @staticmethod
    def _item_form(
        title: str,
        rank: int,
        comment: str | None,
        url: str | None,
        image: tuple[str, bytes, str] | None,
    ) -> dict[str, Any]:
        form: dict[str, Any] = {"data": {"title": title, "rank": str(rank)}}
        if comment:
            form["data"]["comment"] = comment
        if url:
            form["data"]["url"] = url
        if image is not None:
            form["files"] = {"image": image}
        return form

    async def create_item(
        self,
        ranking_id: str,
        title: str,
        rank: int,
        comment: str | None = None,
        url: str | None = None,
        image: tuple[str, bytes, str] | None = None,
    ) -> Result[dict[str, Any]]:
        """Add an item. ``image`` is ``(filename, content, content_type)``."""
        return await self._request(
            "POST",
            f"/api/v1/rankings/{ranking_id}/items",
            authed=True,
            **self._item_form(title, rank, comment, url, image),
        )

    async def get_item(self, ranking_id: str, item_id: str) -> Result[dict[str, Any]]:
        return await self._request("GET", f"/api/v1/rankings/{ranking_id}/items/{item_id}", authed=True)

    async def update_item(
        self,
        ranking_id: str,
        item_id: str,
        title: str,
        rank: int,
        comment: str | None = None,
        url: str | None = None,
        image: tuple[str, bytes, str] | None = None,
    ) -> Result[dict[str, Any]]:
        return await self._request(
            "PATCH",
            f"/api/v1/rankings/{ranking_id}/items/{item_id}",
            authed=True,
            **self._item_form(title, rank, comment, url, image),
        )

    async def move_item(
        self, ranking_id: str, item_id: str, direction: Literal["up", "down"]
    ) -> Result[dict[str, Any]]:
        return await self._request(
            "POST",
            f"/api/v1/rankings/{ranking_id}/items/{item_id}/move",
            authed=True,
            json={"direction": direction},
        )

    async def swap_items(self, ranking_id: str, source_id: str, target_id: str) -> Result[dict[str, Any]]:
        return await self._request(
            "POST",
            f"/api/v1/rankings/{ranking_id}/items/swap",
            authed=True,
            json={"source_id": source_id, "target_id": target_id},
        )

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    async def get_profile(self) -> Result[dict[str, Any]]:
        return await self._request("GET", "/api/v1/profiles/me", authed=True)

    async def update_display_name(self, display_name: str) -> Result[dict[str, Any]]:
        if not display_name.strip():
            return None, ApiError("Display name cannot be empty")
        return await self._request(
            "PUT", "/api/v1/profiles/me", authed=True, json={"display_name": display_name}
        )
