"""Reveal WebSocket endpoint: one synchronized viewer per connection."""

from __future__ import annotations

import json

import jwt
import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from rankshare.auth.jwt import verify_token
from rankshare.rankings.schemas import items_response, ranking_response
from rankshare.rankings.service import RankingNotFoundError, get_ranking_detail
from rankshare.reveal.state import NavigationState
from rankshare.reveal.viewer import RevealViewer

logger = structlog.get_logger()

router = APIRouter()


@router.websocket("/api/v1/rankings/{ranking_id}/reveal/ws")
async def reveal_socket(
    websocket: WebSocket,
    ranking_id: str,
    token: str | None = Query(None),
) -> None:
    """Present a ranking highest rank first, in step with every other viewer.

    Protocol:
        Client -> Server:
            {"action": "next"}
            {"action": "prev"}
            {"action": "ping"}

        Server -> Client:
            {"type": "snapshot", "ranking": {...}, "items": [...], "state": {...}, "clientId": "..."}
            {"type": "state", "currentIndex": 0, "showIntro": false}
            {"type": "pong"}
            {"type": "error", "message": "..."}
    """
    backend = websocket.app.state.backend

    viewer_id: str | None = None
    if token:
        try:
            viewer_id = verify_token(token, expected_type="access")["sub"]
        except jwt.InvalidTokenError as e:
            await websocket.close(code=4001, reason=f"Authentication failed: {e}")
            return

    try:
        detail = await get_ranking_detail(backend.database, ranking_id, viewer_id, descending=True)
    except RankingNotFoundError:
        await websocket.close(code=4004, reason="Ranking not found")
        return

    await websocket.accept()
    viewer = RevealViewer(ranking_id, backend.realtime)
    await viewer.load(detail.items)

    async def push_state(state: NavigationState) -> None:
        await websocket.send_json({"type": "state", **state.to_payload()})

    viewer.add_listener(push_state)
    logger.info("reveal_viewer_joined", ranking_id=ranking_id, client_id=viewer.client_id)

    await websocket.send_json({
        "type": "snapshot",
        "ranking": ranking_response(detail.ranking, detail.author_name).model_dump(mode="json"),
        "items": [item.model_dump(mode="json") for item in items_response(detail.items)],
        "state": viewer.state.to_payload(),
        "clientId": viewer.client_id,
    })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            action = msg.get("action") if isinstance(msg, dict) else None

            if action == "next":
                await viewer.next()
            elif action == "prev":
                await viewer.prev()
            elif action == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await websocket.send_json({
                    "type": "error",
                    "message": f"Unknown action: {action}",
                })

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("reveal_ws_error", ranking_id=ranking_id, client_id=viewer.client_id)
    finally:
        await viewer.close()
        logger.info("reveal_viewer_left", ranking_id=ranking_id, client_id=viewer.client_id)
