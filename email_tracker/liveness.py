"""Registry of connected real-time sessions and the heartbeat protocol.

Two independent loops run on the event loop: one broadcasts a heartbeat
to every session, the other evicts sessions whose last acknowledgement is
older than the stale threshold.  The registry is only touched from the
event loop, so it needs no locking.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from .config import LivenessConfig

if TYPE_CHECKING:
    from .broadcast import BroadcastSink

logger = structlog.get_logger()

HEARTBEAT_EVENT = "ping"
HEARTBEAT_ACK_EVENT = "pong"

# Close code sent to an evicted client ("going away").
EVICTION_CLOSE_CODE = 1001


class Channel(Protocol):
    """The slice of a WebSocket connection the tracker relies on."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


@dataclass
class Session:
    id: str
    channel: Channel
    last_heartbeat_ack: float


class SessionRegistry:
    """Owned mapping of session id to :class:`Session`.

    Removal deletes the key outright; removing an id that is already gone
    returns ``None`` instead of raising.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def register(self, channel: Channel, now: float) -> Session:
        session = Session(id=uuid.uuid4().hex, channel=channel, last_heartbeat_ack=now)
        self._sessions[session.id] = session
        return session

    def touch(self, session_id: str, now: float) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.last_heartbeat_ack = now
        return True

    def remove(self, session_id: str) -> Session | None:
        return self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def snapshot(self) -> list[Session]:
        """A copy of the current sessions, safe to iterate while removing."""
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions


class LivenessTracker:
    """Opens, acknowledges, sweeps and closes real-time sessions."""

    def __init__(
        self,
        registry: SessionRegistry,
        sink: BroadcastSink,
        config: LivenessConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._sink = sink
        self._config = config
        self._clock = clock

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Connection events
    # ------------------------------------------------------------------

    def open_session(self, channel: Channel) -> Session:
        session = self._registry.register(channel, self._clock())
        logger.info("session_opened", session_id=session.id, active=len(self._registry))
        return session

    def acknowledge(self, session_id: str) -> bool:
        """Record a heartbeat reply.  Unknown ids are ignored."""
        known = self._registry.touch(session_id, self._clock())
        if not known:
            logger.debug("heartbeat_ack_ignored", session_id=session_id)
        return known

    def close_session(self, session_id: str) -> None:
        if self._registry.remove(session_id) is not None:
            logger.info("session_closed", session_id=session_id, active=len(self._registry))

    # ------------------------------------------------------------------
    # Periodic actions
    # ------------------------------------------------------------------

    async def emit_heartbeat(self) -> int:
        return await self._sink.emit(HEARTBEAT_EVENT, {"timestamp": int(self._clock() * 1000)})

    async def sweep(self) -> list[str]:
        """Evict every session silent for longer than ``stale_after_seconds``.

        Returns the ids evicted by this sweep.
        """
        now = self._clock()
        evicted: list[str] = []
        for session in self._registry.snapshot():
            if now - session.last_heartbeat_ack <= self._config.stale_after_seconds:
                continue
            # Already removed by a concurrent close: nothing to do.
            if self._registry.remove(session.id) is None:
                continue
            evicted.append(session.id)
            try:
                await session.channel.close(code=EVICTION_CLOSE_CODE)
            except Exception as exc:
                logger.warning("session_close_failed", session_id=session.id, error=str(exc))
            logger.warning(
                "session_evicted",
                session_id=session.id,
                silent_for=round(now - session.last_heartbeat_ack, 3),
            )
        return evicted

    async def run(self) -> None:
        """Run the heartbeat and sweep loops until cancelled."""
        logger.info(
            "liveness_tracker_started",
            heartbeat_interval=self._config.heartbeat_interval_seconds,
            sweep_interval=self._config.sweep_interval_seconds,
            stale_after=self._config.stale_after_seconds,
        )
        async with asyncio.TaskGroup() as tg:
            tg.create_task(self._every(self._config.heartbeat_interval_seconds, self.emit_heartbeat))
            tg.create_task(self._every(self._config.sweep_interval_seconds, self.sweep))

    async def _every(self, interval: float, action: Callable[[], Awaitable[object]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except Exception:
                logger.exception("liveness_action_failed", action=action.__name__)
