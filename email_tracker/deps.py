"""FastAPI dependency-injection helpers.

Everything here is built once in the application lifespan and stored on
``app.state``; tests swap them with ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi.requests import HTTPConnection

from email_tracker.broadcast import BroadcastSink
from email_tracker.liveness import LivenessTracker
from email_tracker.store import EmailStore


def get_store(conn: HTTPConnection) -> EmailStore:
    return conn.app.state.store


def get_broadcaster(conn: HTTPConnection) -> BroadcastSink:
    return conn.app.state.sink


def get_tracker(conn: HTTPConnection) -> LivenessTracker:
    return conn.app.state.tracker
