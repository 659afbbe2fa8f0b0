"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from .config import ImapConfig
from .exceptions import (
    AuthError,
    MailboxTimeoutError,
    NetworkError,
    ProtocolError,
)

logger = structlog.get_logger()

HEADER_FIELDS: tuple[str, ...] = ("FROM", "TO", "SUBJECT", "DATE")


@dataclass(frozen=True)
class HeaderChunk:
    """The header-fields part of one fetched message."""

    uid: str
    data: bytes


@dataclass(frozen=True)
class BodyChunk:
    """The body text part of one fetched message."""

    uid: str
    data: bytes


MessageChunk = HeaderChunk | BodyChunk


def _fetch_items(header_fields: Sequence[str]) -> str:
    # Non-PEEK sections: the server sets \Seen as a side effect.
    return f"(BODY[HEADER.FIELDS ({' '.join(header_fields)})] BODY[TEXT])"


def _split_fetch_response(data: list[Any]) -> tuple[bytes | None, bytes | None]:
    """Pick the header and text sections out of a raw FETCH response.

    imaplib returns literals as ``(label, payload)`` tuples interleaved with
    bare ``bytes`` continuation lines; only the tuples carry content.
    """
    header: bytes | None = None
    text: bytes | None = None
    for item in data:
        if not isinstance(item, tuple) or len(item) < 2:
            continue
        label = item[0].upper() if isinstance(item[0], bytes) else b""
        if b"HEADER.FIELDS" in label:
            header = item[1]
        elif b"BODY[TEXT]" in label:
            text = item[1]
    return header, text


def _abandon(conn: imaplib.IMAP4_SSL) -> None:
    try:
        conn.shutdown()
    except OSError:
        pass


class AsyncImapClient:
    """Async-friendly IMAP client for one poll cycle.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  The
    connection is always implicit TLS.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the TLS session and log in.

        Raises :class:`AuthError`, :class:`NetworkError` or
        :class:`MailboxTimeoutError`.
        """
        await asyncio.to_thread(self._connect_sync)
        logger.info("imap_connected", host=self._config.host, port=self._config.port)

    def _connect_sync(self) -> None:
        try:
            conn = imaplib.IMAP4_SSL(
                self._config.host,
                self._config.port,
                timeout=self._config.conn_timeout_seconds,
            )
        except TimeoutError as exc:
            raise MailboxTimeoutError(f"connect to {self._config.host} timed out") from exc
        except OSError as exc:
            raise NetworkError(f"cannot reach {self._config.host}: {exc}") from exc

        try:
            # Short budget for the LOGIN round trip, long one for the session.
            conn.sock.settimeout(self._config.auth_timeout_seconds)
            conn.login(self._config.username, self._config.password.get_secret_value())
            conn.sock.settimeout(self._config.conn_timeout_seconds)
        except imaplib.IMAP4.abort as exc:
            _abandon(conn)
            raise NetworkError(f"connection dropped during login: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            _abandon(conn)
            raise AuthError(f"login rejected for {self._config.username}") from exc
        except TimeoutError as exc:
            _abandon(conn)
            raise MailboxTimeoutError("login timed out") from exc
        except OSError as exc:
            _abandon(conn)
            raise NetworkError(f"connection lost during login: {exc}") from exc

        self._conn = conn

    async def disconnect(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    # ------------------------------------------------------------------
    # Mailbox commands
    # ------------------------------------------------------------------

    async def select_mailbox(self, name: str) -> int:
        """SELECT *name* read-write and return its message count."""
        status, data = await self._run(self._require_conn().select, name)
        if status != "OK":
            raise ProtocolError(f"SELECT {name} failed: {data!r}")
        try:
            return int(data[0])
        except (TypeError, ValueError, IndexError):
            return 0

    async def search_unseen(self) -> list[str]:
        """Return the UIDs of all messages without the ``\\Seen`` flag."""
        status, data = await self._run(self._require_conn().uid, "SEARCH", None, "UNSEEN")
        if status != "OK":
            raise ProtocolError(f"UID SEARCH UNSEEN failed: {data!r}")
        if not data or not data[0]:
            return []
        return [uid.decode() for uid in data[0].split()]

    async def fetch(
        self,
        uids: Sequence[str],
        *,
        header_fields: Sequence[str] = HEADER_FIELDS,
    ) -> AsyncIterator[MessageChunk]:
        """Yield a :class:`HeaderChunk` and a :class:`BodyChunk` per UID.

        Chunks are produced lazily, one FETCH per UID.  A section the server
        left out is yielded as empty bytes so the message can still
        complete; a UID with no sections at all is skipped.
        """
        conn = self._require_conn()
        items = _fetch_items(header_fields)
        for uid in uids:
            status, data = await self._run(conn.uid, "FETCH", uid, items)
            if status != "OK":
                raise ProtocolError(f"UID FETCH {uid} failed: {data!r}")

            header, text = _split_fetch_response(data or [])
            if header is None and text is None:
                logger.warning("imap_fetch_empty", uid=uid)
                continue

            yield HeaderChunk(uid=uid, data=header or b"")
            yield BodyChunk(uid=uid, data=text or b"")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_conn(self) -> imaplib.IMAP4_SSL:
        if self._conn is None:
            raise ProtocolError("Not connected")
        return self._conn

    async def _run(self, fn: Callable[..., tuple[str, list[Any]]], *args: Any) -> tuple[str, list[Any]]:
        """Run an imaplib command in a thread, mapping its failures."""
        try:
            return await asyncio.to_thread(fn, *args)
        except imaplib.IMAP4.abort as exc:
            raise NetworkError(f"connection dropped: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise ProtocolError(str(exc)) from exc
        except TimeoutError as exc:
            raise MailboxTimeoutError("IMAP command timed out") from exc
        except OSError as exc:
            raise NetworkError(str(exc)) from exc
