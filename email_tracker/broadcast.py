"""Fan-out of named events to every registered real-time session."""

from __future__ import annotations

from typing import Any

import structlog

from .exceptions import BroadcastError
from .liveness import SessionRegistry

logger = structlog.get_logger()

NEW_EMAIL_EVENT = "newEmail"


class BroadcastSink:
    """Sends ``{"event": name, "data": payload}`` frames to all sessions.

    Delivery is best-effort per session: a failed send is logged and the
    remaining sessions still receive the event.  Dead sessions are left for
    the liveness sweep to evict.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry

    async def emit(self, event: str, payload: dict[str, Any]) -> int:
        """Send *event* to every session and return how many sends succeeded.

        Raises :class:`BroadcastError` when sessions exist but every send
        failed.
        """
        frame = {"event": event, "data": payload}
        sessions = self._registry.snapshot()
        delivered = 0
        for session in sessions:
            try:
                await session.channel.send_json(frame)
            except Exception as exc:
                logger.warning(
                    "broadcast_send_failed",
                    event_name=event,
                    session_id=session.id,
                    error=str(exc),
                )
                continue
            delivered += 1

        if sessions and not delivered:
            raise BroadcastError(f"{event} reached none of {len(sessions)} sessions")
        logger.debug("broadcast_sent", event_name=event, delivered=delivered)
        return delivered
