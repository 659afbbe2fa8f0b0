"""WebSocket endpoint for real-time clients.

Server → client frames are ``{"event": ..., "data": ...}``; the only frame
a client is expected to send is the heartbeat reply ``{"event": "pong"}``.
"""

from __future__ import annotations

import json
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from email_tracker.deps import get_tracker
from email_tracker.liveness import HEARTBEAT_ACK_EVENT, LivenessTracker

logger = structlog.get_logger()

router = APIRouter(tags=["realtime"])


def _event_name(raw: str) -> str | None:
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    if isinstance(frame, dict) and isinstance(frame.get("event"), str):
        return frame["event"]
    return None


@router.websocket("/ws")
async def realtime(
    websocket: WebSocket,
    tracker: Annotated[LivenessTracker, Depends(get_tracker)],
):
    await websocket.accept()
    session = tracker.open_session(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            event = _event_name(raw)
            if event == HEARTBEAT_ACK_EVENT:
                tracker.acknowledge(session.id)
            else:
                logger.debug("realtime_frame_ignored", session_id=session.id, event_name=event)
    except WebSocketDisconnect:
        pass
    finally:
        tracker.close_session(session.id)
