"""WebSocket endpoints.

``/ws`` is a receive-only feed of ``new_items`` events from the background
poller. ``/ws/agent`` relays request frames to the analysis agent and streams
every agent message back to the same socket, in order.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from triage_sidekick.agent.events import (
    CatchUpRequest,
    FollowUpRequest,
    QuickActionRequest,
    request_frame_adapter,
)
from triage_sidekick.agent.service import AuthenticationRequiredError
from triage_sidekick.server.state import DashboardState, socket_state

logger = logging.getLogger(__name__)

router = APIRouter()

NO_SESSION_MESSAGE = "No active session. Please run \"Let's get caught up\" first."


@dataclass(slots=True)
class ClientState:
    session_id: str | None = None


def error_frame(message: str, *, is_auth_error: bool = False) -> dict[str, Any]:
    return {"type": "error", "content": message, "isAuthError": is_auth_error}


@router.websocket("/ws")
async def notifications_socket(websocket: WebSocket) -> None:
    state = socket_state(websocket)
    await websocket.accept()
    state.hub.add(websocket)
    try:
        while True:
            # Clients never need to talk; reading just notices the disconnect.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        state.hub.discard(websocket)


@router.websocket("/ws/agent")
async def agent_socket(websocket: WebSocket) -> None:
    state = socket_state(websocket)
    await websocket.accept()
    client = ClientState()
    logger.info("Agent client connected")
    try:
        while True:
            raw = await websocket.receive_text()
            await handle_request(websocket, state, client, raw)
    except WebSocketDisconnect:
        logger.info("Agent client disconnected")


async def handle_request(
    websocket: WebSocket, state: DashboardState, client: ClientState, raw: str
) -> None:
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        await websocket.send_json(error_frame("Malformed request frame"))
        return

    try:
        request = request_frame_adapter.validate_python(decoded)
    except ValidationError:
        kind = decoded.get("type") if isinstance(decoded, dict) else None
        await websocket.send_json(error_frame(f"Unknown message type: {kind}"))
        return

    try:
        if isinstance(request, CatchUpRequest):
            stream = state.analysis.catch_up(session_id=client.session_id)
        elif isinstance(request, FollowUpRequest):
            if client.session_id is None:
                await websocket.send_json(error_frame(NO_SESSION_MESSAGE))
                return
            stream = state.analysis.follow_up(request.prompt, session_id=client.session_id)
        elif isinstance(request, QuickActionRequest):
            stream = state.analysis.quick_action(
                request.action, request.issue_number, request.value
            )
        await _relay(websocket, client, stream)
    except WebSocketDisconnect:
        raise
    except AuthenticationRequiredError as e:
        await websocket.send_json(error_frame(str(e), is_auth_error=True))
    except Exception as e:
        logger.exception("Agent request failed", extra={"request_type": request.type})
        await websocket.send_json(error_frame(str(e) or "Unknown error"))


async def _relay(
    websocket: WebSocket, client: ClientState, stream: AsyncIterator[dict[str, Any]]
) -> None:
    async for frame in stream:
        session_id = frame.get("session_id")
        if isinstance(session_id, str) and session_id:
            client.session_id = session_id
        await websocket.send_json(frame)
