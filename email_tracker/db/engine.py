"""Async SQLAlchemy engine for the record store."""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from email_tracker.config import DatabaseConfig
from email_tracker.db.models import Base


def _make_engine(config: DatabaseConfig):
    url = make_url(config.url)
    kwargs: dict[str, Any] = {"echo": config.echo}
    if url.get_backend_name() == "sqlite":
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise every checkout sees an empty DB.
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(pool_size=5, max_overflow=10)
    return create_async_engine(url, **kwargs)


class DatabaseEngine:
    """Holds the engine and its session factory.

    Created once at startup and stored on ``app.state``.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.engine = _make_engine(config)
        self.session = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()
