"""Tests for the reveal WebSocket endpoint."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from rankshare.backend import Backend
from rankshare.main import create_app


def signed_in_headers(client: TestClient, mock_email_service, email: str = "owner@example.com") -> dict[str, str]:
    client.post("/api/v1/auth/magic-link", json={"email": email})
    link = mock_email_service.send_template.call_args.kwargs["context"]["link_url"]
    token = parse_qs(urlparse(link).query)["token"][0]
    data = client.post("/api/v1/auth/magic-link/verify", json={"token": token}).json()
    return {"Authorization": f"Bearer {data['access_token']}"}


@pytest.fixture
def reveal_setup(sync_backend: Backend, mock_email_service):
    with TestClient(create_app(backend=sync_backend)) as client:
        headers = signed_in_headers(client, mock_email_service)
        ranking = client.post("/api/v1/rankings", json={"title": "Best pizza"}, headers=headers).json()
        for rank, title in [(1, "Margherita"), (2, "Marinara"), (3, "Diavola")]:
            client.post(
                f"/api/v1/rankings/{ranking['id']}/items",
                data={"title": title, "rank": str(rank)},
                headers=headers,
            )
        yield client, ranking, headers


def test_snapshot_lists_highest_rank_first(reveal_setup):
    client, ranking, _ = reveal_setup

    with client.websocket_connect(f"/api/v1/rankings/{ranking['id']}/reveal/ws") as ws:
        snapshot = ws.receive_json()

    assert snapshot["type"] == "snapshot"
    assert snapshot["ranking"]["id"] == ranking["id"]
    assert [item["rank"] for item in snapshot["items"]] == [3, 2, 1]
    assert snapshot["state"] == {"currentIndex": 0, "showIntro": True}
    assert snapshot["clientId"]


def test_navigation_and_ping(reveal_setup):
    client, ranking, _ = reveal_setup

    with client.websocket_connect(f"/api/v1/rankings/{ranking['id']}/reveal/ws") as ws:
        ws.receive_json()

        ws.send_json({"action": "next"})
        assert ws.receive_json() == {"type": "state", "currentIndex": 0, "showIntro": False}

        ws.send_json({"action": "next"})
        assert ws.receive_json() == {"type": "state", "currentIndex": 1, "showIntro": False}

        ws.send_json({"action": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        ws.send_json({"action": "dance"})
        assert ws.receive_json()["type"] == "error"

        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}


def test_viewers_follow_each_other(reveal_setup):
    client, ranking, _ = reveal_setup
    url = f"/api/v1/rankings/{ranking['id']}/reveal/ws"

    with client.websocket_connect(url) as first, client.websocket_connect(url) as second:
        first.receive_json()
        second.receive_json()

        first.send_json({"action": "next"})
        assert first.receive_json() == {"type": "state", "currentIndex": 0, "showIntro": False}
        assert second.receive_json() == {"type": "state", "currentIndex": 0, "showIntro": False}

        second.send_json({"action": "prev"})
        assert second.receive_json() == {"type": "state", "currentIndex": 0, "showIntro": True}
        assert first.receive_json() == {"type": "state", "currentIndex": 0, "showIntro": True}


def test_private_ranking_needs_owner_token(sync_backend: Backend, mock_email_service):
    with TestClient(create_app(backend=sync_backend)) as client:
        headers = signed_in_headers(client, mock_email_service)
        ranking = client.post(
            "/api/v1/rankings", json={"title": "Secret", "is_public": False}, headers=headers
        ).json()
        url = f"/api/v1/rankings/{ranking['id']}/reveal/ws"

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(url):
                pass
        assert exc.value.code == 4004

        token = headers["Authorization"].removeprefix("Bearer ")
        with client.websocket_connect(f"{url}?token={token}") as ws:
            assert ws.receive_json()["type"] == "snapshot"


def test_bad_token_rejected(reveal_setup):
    client, ranking, _ = reveal_setup

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/api/v1/rankings/{ranking['id']}/reveal/ws?token=garbage"):
            pass

    assert exc.value.code == 4001
