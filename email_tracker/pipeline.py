"""IngestionPipeline: poll the mailbox, parse, persist, broadcast.

One poll cycle walks ``CycleState``::

    idle → connecting → authenticated → box_selected → searching
         → (no_results | fetching) → closing → idle

Cycles are single-flight: a trigger that arrives while a cycle is running
is dropped, so at most one remote session exists at a time.  The remote
server's ``\\Seen`` flag, set by the fetch, is the only deduplication.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

import structlog

from .broadcast import NEW_EMAIL_EVENT, BroadcastSink
from .config import ImapConfig, RetryConfig
from .exceptions import BroadcastError, MailboxError, PersistenceError
from .imap_client import AsyncImapClient, BodyChunk, HeaderChunk, MessageChunk
from .models import CycleResult, CycleState, EmailCreate, StoredEmail
from .parser import HeaderFields, parse_body_block, parse_header_block
from .retry import with_retry

logger = structlog.get_logger()


class RecordSink(Protocol):
    """The part of the record store the pipeline writes to."""

    async def insert(self, record: EmailCreate) -> StoredEmail: ...


MailboxClientFactory = Callable[[ImapConfig], AsyncImapClient]


@dataclass
class PartialMessage:
    """Accumulates the two sections of one in-flight message."""

    uid: str
    headers: HeaderFields = field(default_factory=HeaderFields)
    body: str = ""
    header_done: bool = False
    body_done: bool = False

    def accept(self, chunk: MessageChunk) -> None:
        if isinstance(chunk, HeaderChunk):
            self.headers = parse_header_block(chunk.data)
            self.header_done = True
        elif isinstance(chunk, BodyChunk):
            self.body = parse_body_block(chunk.data)
            self.body_done = True

    @property
    def complete(self) -> bool:
        return self.header_done and self.body_done

    def finalize(self) -> EmailCreate:
        return EmailCreate(
            body=self.body,
            date=self.headers.date,
            from_=self.headers.from_,
            to=self.headers.to,
            subject=self.headers.subject,
        )


class IngestionPipeline:
    """Drives the mailbox client, the parser, the store and the sink.

    Dependencies are injected so tests can swap any of them for doubles.
    Records whose insert still fails after the retry policy is exhausted
    are parked in a bounded pending queue and re-attempted at the start of
    the next cycle.
    """

    def __init__(
        self,
        imap_config: ImapConfig,
        store: RecordSink,
        sink: BroadcastSink,
        retry_config: RetryConfig,
        *,
        client_factory: MailboxClientFactory = AsyncImapClient,
    ) -> None:
        self._imap_config = imap_config
        self._store = store
        self._sink = sink
        self._retry = with_retry(
            retry_config, operation="store_insert", retryable_exceptions=(PersistenceError,)
        )
        self._client_factory = client_factory
        self._lock = asyncio.Lock()
        self._pending: deque[EmailCreate] = deque(maxlen=retry_config.pending_queue_size)
        self._tasks: set[asyncio.Task] = set()

        self.state: CycleState = CycleState.IDLE
        self.last_cycle_at: datetime | None = None
        self.last_result: CycleResult | None = None
        self.emails_ingested: int = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleResult | None:
        """Run one poll cycle.  Returns ``None`` if a cycle was already running."""
        if self._lock.locked():
            logger.info("poll_cycle_skipped", reason="cycle_in_flight", state=self.state.value)
            return None

        async with self._lock:
            with structlog.contextvars.bound_contextvars(cycle_id=uuid.uuid4().hex[:12]):
                result = CycleResult()
                await self._redeliver_pending(result)

                client = self._client_factory(self._imap_config)
                try:
                    async with asyncio.timeout(self._imap_config.cycle_timeout_seconds):
                        await self._poll(client, result)
                except MailboxError as exc:
                    result.error = f"{type(exc).__name__}: {exc}"
                    logger.error(
                        "poll_cycle_failed",
                        state=self.state.value,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                except TimeoutError:
                    result.error = "cycle timed out"
                    logger.error(
                        "poll_cycle_timeout",
                        state=self.state.value,
                        timeout=self._imap_config.cycle_timeout_seconds,
                    )
                finally:
                    self._set_state(CycleState.CLOSING)
                    await client.disconnect()
                    self._set_state(CycleState.IDLE)

                self.last_cycle_at = datetime.now(UTC)
                self.last_result = result
                logger.info("poll_cycle_complete", **result.model_dump(exclude_none=True))
                return result

    async def _poll(self, client: AsyncImapClient, result: CycleResult) -> None:
        self._set_state(CycleState.CONNECTING)
        await client.connect()
        self._set_state(CycleState.AUTHENTICATED)

        await client.select_mailbox(self._imap_config.mailbox)
        self._set_state(CycleState.BOX_SELECTED)

        self._set_state(CycleState.SEARCHING)
        uids = await client.search_unseen()
        result.found = len(uids)
        if not uids:
            self._set_state(CycleState.NO_RESULTS)
            return

        self._set_state(CycleState.FETCHING)
        logger.info("unseen_messages_found", count=len(uids))
        in_flight: dict[str, PartialMessage] = {}
        async for chunk in client.fetch(uids):
            partial = in_flight.setdefault(chunk.uid, PartialMessage(uid=chunk.uid))
            partial.accept(chunk)
            if partial.complete:
                del in_flight[chunk.uid]
                await self._deliver(partial.finalize(), result, uid=chunk.uid)

        if in_flight:
            logger.warning("messages_incomplete", uids=sorted(in_flight))

    # ------------------------------------------------------------------
    # Persist, then broadcast
    # ------------------------------------------------------------------

    async def _deliver(self, record: EmailCreate, result: CycleResult, *, uid: str | None = None) -> bool:
        """Persist *record*; only a persisted record is broadcast."""
        try:
            stored = await self._persist(record)
        except asyncio.CancelledError:
            # Cycle timeout or shutdown mid-insert. The message is already
            # \Seen on the server, so this queue is its only remaining copy.
            result.failed += 1
            self._park(record)
            logger.warning("email_persist_interrupted", uid=uid, subject=record.subject)
            raise
        except PersistenceError as exc:
            result.failed += 1
            self._park(record)
            logger.error(
                "email_persist_failed",
                uid=uid,
                subject=record.subject,
                error=str(exc),
                pending=len(self._pending),
            )
            return False

        result.persisted += 1
        self.emails_ingested += 1
        logger.info("email_saved", uid=uid, email_id=stored.id, subject=stored.subject)

        try:
            await self._sink.emit(NEW_EMAIL_EVENT, stored.to_payload())
        except BroadcastError as exc:
            logger.warning("email_broadcast_failed", email_id=stored.id, error=str(exc))
            return True
        result.broadcast += 1
        return True

    async def _persist(self, record: EmailCreate) -> StoredEmail:
        @self._retry
        async def _insert() -> StoredEmail:
            return await self._store.insert(record)

        return await _insert()

    def _park(self, record: EmailCreate) -> None:
        if len(self._pending) == self._pending.maxlen:
            dropped = self._pending[0]
            logger.error("pending_queue_full", dropped_subject=dropped.subject)
        self._pending.append(record)

    async def _redeliver_pending(self, result: CycleResult) -> None:
        if not self._pending:
            return
        records = list(self._pending)
        self._pending.clear()
        logger.info("pending_redelivery_started", count=len(records))
        for record in records:
            if await self._deliver(record, result):
                result.redelivered += 1

    def _set_state(self, state: CycleState) -> None:
        if state is not self.state:
            logger.debug("poll_state_changed", old=self.state.value, new=state.value)
            self.state = state

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Fire a cycle every ``poll_interval_seconds`` until cancelled.

        Ticks are fixed-rate; a tick that lands while a cycle is still in
        flight is dropped by :meth:`run_cycle`.
        """
        logger.info(
            "poller_started",
            host=self._imap_config.host,
            mailbox=self._imap_config.mailbox,
            interval=self._imap_config.poll_interval_seconds,
        )
        try:
            while True:
                task = asyncio.create_task(self.run_cycle())
                self._tasks.add(task)
                task.add_done_callback(self._on_cycle_done)
                await asyncio.sleep(self._imap_config.poll_interval_seconds)
        finally:
            tasks = list(self._tasks)
            for task in tasks:
                task.cancel()
            # Let each cancelled cycle close its mailbox session first.
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("poller_stopped")

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("poll_cycle_crashed", error_type=type(exc).__name__, error=str(exc))
