"""Shared test fixtures for the email tracker test suite."""

from __future__ import annotations

import itertools
from collections.abc import AsyncIterator, Sequence
from typing import Any

import pytest

from email_tracker.broadcast import BroadcastSink
from email_tracker.config import (
    DatabaseConfig,
    ImapConfig,
    LivenessConfig,
    RetryConfig,
    Settings,
)
from email_tracker.db import DatabaseEngine
from email_tracker.exceptions import PersistenceError
from email_tracker.imap_client import BodyChunk, HeaderChunk, MessageChunk
from email_tracker.liveness import SessionRegistry
from email_tracker.models import EmailCreate, StoredEmail
from email_tracker.store import EmailStore


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        username="testuser",
        password="testpass",
        mailbox="INBOX",
        auth_timeout_seconds=10.0,
        conn_timeout_seconds=30.0,
        poll_interval_seconds=1.0,
        cycle_timeout_seconds=5.0,
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.1,
        multiplier=2.0,
        pending_queue_size=10,
    )


@pytest.fixture
def liveness_config() -> LivenessConfig:
    return LivenessConfig(
        heartbeat_interval_seconds=5.0,
        sweep_interval_seconds=5.0,
        stale_after_seconds=30.0,
    )


@pytest.fixture
def settings(imap_config: ImapConfig, retry_config: RetryConfig) -> Settings:
    return Settings(
        imap=imap_config.model_copy(update={"enabled": False}),
        database=DatabaseConfig(url="sqlite+aiosqlite://"),
        liveness=LivenessConfig(
            heartbeat_interval_seconds=60.0,
            sweep_interval_seconds=60.0,
            stale_after_seconds=300.0,
        ),
        retry=retry_config,
        log_json=False,
    )


@pytest.fixture
async def db() -> AsyncIterator[DatabaseEngine]:
    engine = DatabaseEngine(DatabaseConfig(url="sqlite+aiosqlite://"))
    await engine.create_schema()
    yield engine
    await engine.close()


@pytest.fixture
def store(db: DatabaseEngine) -> EmailStore:
    return EmailStore(db.session)


# ------------------------------------------------------------------
# Raw section builders
# ------------------------------------------------------------------


def build_header_block(
    *,
    from_addr: str | None = "a@x.com",
    to_addr: str | None = "b@y.com",
    subject: str | None = "Hi",
    date: str | None = "2024-01-01",
) -> bytes:
    """Build a ``HEADER.FIELDS (FROM TO SUBJECT DATE)`` section."""
    lines = []
    if from_addr is not None:
        lines.append(f"From: {from_addr}")
    if to_addr is not None:
        lines.append(f"To: {to_addr}")
    if subject is not None:
        lines.append(f"Subject: {subject}")
    if date is not None:
        lines.append(f"Date: {date}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode()


def build_html_body(inner: str = "Hello") -> bytes:
    return f"<html><body>{inner}</body></html>".encode()


# ------------------------------------------------------------------
# Test doubles
# ------------------------------------------------------------------


class FakeChannel:
    """Stands in for a WebSocket: records frames and close calls."""

    def __init__(self, *, fail_send: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed_with: list[int] = []
        self.fail_send = fail_send

    async def send_json(self, data: Any) -> None:
        if self.fail_send:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with.append(code)

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]


class FakeMailboxClient:
    """Scripted replacement for ``AsyncImapClient``.

    *messages* maps UID → (header bytes, body bytes).  *chunk_order* fixes
    the order chunks are yielded in, as ``(uid, "header" | "body")`` pairs;
    by default header then body per UID.
    """

    def __init__(
        self,
        messages: dict[str, tuple[bytes, bytes]] | None = None,
        *,
        chunk_order: Sequence[tuple[str, str]] | None = None,
        connect_error: Exception | None = None,
        select_error: Exception | None = None,
        search_error: Exception | None = None,
        fetch_error_after: int | None = None,
        fetch_error: Exception | None = None,
    ) -> None:
        self.messages = messages or {}
        self.chunk_order = chunk_order
        self.connect_error = connect_error
        self.select_error = select_error
        self.search_error = search_error
        self.fetch_error_after = fetch_error_after
        self.fetch_error = fetch_error
        self.calls: list[str] = []
        self.fetched_uids: list[str] = []

    async def connect(self) -> None:
        self.calls.append("connect")
        if self.connect_error:
            raise self.connect_error

    async def select_mailbox(self, name: str) -> int:
        self.calls.append(f"select:{name}")
        if self.select_error:
            raise self.select_error
        return len(self.messages)

    async def search_unseen(self) -> list[str]:
        self.calls.append("search")
        if self.search_error:
            raise self.search_error
        return list(self.messages)

    async def fetch(self, uids: Sequence[str], **_: Any) -> AsyncIterator[MessageChunk]:
        self.calls.append("fetch")
        self.fetched_uids = list(uids)
        order = self.chunk_order or [(uid, part) for uid in uids for part in ("header", "body")]
        for index, (uid, part) in enumerate(order):
            if self.fetch_error_after is not None and index == self.fetch_error_after:
                raise self.fetch_error or RuntimeError("fetch failed")
            header, body = self.messages[uid]
            if part == "header":
                yield HeaderChunk(uid=uid, data=header)
            else:
                yield BodyChunk(uid=uid, data=body)

    async def disconnect(self) -> None:
        self.calls.append("disconnect")


class FakeStore:
    """In-memory record sink with optional scripted insert failures."""

    def __init__(self, *, fail_times: int = 0, fail_subjects: set[str] | None = None) -> None:
        self.records: list[StoredEmail] = []
        self.fail_times = fail_times
        self.fail_subjects = fail_subjects or set()
        self.attempts = 0
        self._ids = itertools.count(1)

    async def insert(self, record: EmailCreate) -> StoredEmail:
        self.attempts += 1
        if record.subject in self.fail_subjects:
            raise PersistenceError(f"cannot store {record.subject}")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise PersistenceError("database is locked")
        stored = StoredEmail(id=f"id-{next(self._ids)}", **record.model_dump())
        self.records.append(stored)
        return stored


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def sink(registry: SessionRegistry) -> BroadcastSink:
    return BroadcastSink(registry)
