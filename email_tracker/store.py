"""EmailStore: the record store contract over the async ORM.

All SQLAlchemy failures surface as :class:`PersistenceError`; a missing id
is ``None``, never an exception.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db.models import Email, EmailTag
from .exceptions import PersistenceError
from .models import EmailCreate, EmailFilter, StoredEmail, TagsUpdate

logger = structlog.get_logger()


def _to_record(row: Email) -> StoredEmail:
    return StoredEmail(
        id=row.id,
        body=row.body,
        date=row.date,
        from_=list(row.from_addresses or []),
        to=list(row.to_addresses or []),
        subject=row.subject,
        tags=[t.tag for t in row.tags],
    )


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class EmailStore:
    """Create / find / update / delete email records."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as session:
            try:
                yield session
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("store_operation_failed", operation=operation, error=str(exc))
                raise PersistenceError(f"{operation} failed: {exc}") from exc

    async def insert(self, record: EmailCreate) -> StoredEmail:
        """Persist *record* and return it with its generated id."""
        async with self._session("insert") as session:
            row = Email(
                body=record.body,
                date=record.date,
                from_addresses=list(record.from_),
                to_addresses=list(record.to),
                subject=record.subject,
                tags=[],
            )
            session.add(row)
            await session.commit()
            return _to_record(row)

    async def find(self, email_filter: EmailFilter | None = None) -> list[StoredEmail]:
        """Records matching *email_filter*, oldest first."""
        email_filter = email_filter or EmailFilter()
        stmt = select(Email)
        if email_filter.body_contains:
            stmt = stmt.where(Email.body.ilike(_like_pattern(email_filter.body_contains), escape="\\"))
        if email_filter.tag:
            stmt = stmt.where(Email.tags.any(EmailTag.tag == email_filter.tag))
        stmt = stmt.order_by(Email.created_at, Email.id)

        async with self._session("find") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_record(r) for r in rows]

    async def get_by_id(self, email_id: str) -> StoredEmail | None:
        async with self._session("get") as session:
            row = await session.get(Email, email_id)
            return _to_record(row) if row is not None else None

    async def update_by_id(self, email_id: str, patch: TagsUpdate) -> StoredEmail | None:
        """Add ``patch.tags`` to the record's tag set.

        Tags are the only mutable field; tags already present are left
        alone, so applying the same patch twice is a no-op.
        """
        async with self._session("update") as session:
            row = await session.get(Email, email_id)
            if row is None:
                return None
            existing = {t.tag for t in row.tags}
            for tag in dict.fromkeys(patch.tags):
                if tag not in existing:
                    row.tags.append(EmailTag(tag=tag))
            await session.commit()
            await session.refresh(row, attribute_names=["tags"])
            return _to_record(row)

    async def add_tags(self, email_id: str, tags: list[str]) -> StoredEmail | None:
        return await self.update_by_id(email_id, TagsUpdate(tags=tags))

    async def delete_by_id(self, email_id: str) -> StoredEmail | None:
        """Remove the record and return what was removed."""
        async with self._session("delete") as session:
            row = await session.get(Email, email_id)
            if row is None:
                return None
            removed = _to_record(row)
            await session.delete(row)
            await session.commit()
            return removed
