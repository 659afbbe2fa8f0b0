"""Data models shared by the pipeline, the store and the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EmailBase(BaseModel):
    """Fields of a normalized email as extracted from the mailbox.

    ``from`` is a Python keyword, so the attribute is ``from_`` and the wire
    name is ``from``.
    """

    model_config = ConfigDict(populate_by_name=True)

    body: str = Field(default="", description="Inner markup of the HTML body, or the raw text")
    date: str = Field(default="", description="Original Date header, not re-parsed")
    from_: list[str] = Field(default_factory=list, alias="from")
    to: list[str] = Field(default_factory=list)
    subject: str = Field(default="")


class EmailCreate(EmailBase):
    """Request body for ``POST /emails`` and input to ``EmailStore.insert``."""


class StoredEmail(EmailBase):
    """An email record as held by the store, with its generated id."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    tags: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """JSON-serializable form used for broadcast events."""
        return self.model_dump(mode="json", by_alias=True)


class TagsUpdate(BaseModel):
    """Request body for ``POST /emails/{id}/tags``."""

    tags: list[str] = Field(min_length=1)


class EmailFilter(BaseModel):
    """Query contract for ``EmailStore.find``.  Empty filter matches all."""

    body_contains: str | None = None
    tag: str | None = None


class DeleteResult(BaseModel):
    message: str


class CycleState(str, Enum):
    """Where the current poll cycle is."""

    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    BOX_SELECTED = "box_selected"
    SEARCHING = "searching"
    NO_RESULTS = "no_results"
    FETCHING = "fetching"
    CLOSING = "closing"


class CycleResult(BaseModel):
    """Counters for one completed poll cycle."""

    found: int = 0
    persisted: int = 0
    broadcast: int = 0
    failed: int = 0
    redelivered: int = 0
    error: str | None = None


class HealthStatus(BaseModel):
    """Response model for ``GET /health``."""

    service: str = "email-tracker"
    poller_state: CycleState
    poller_enabled: bool
    last_cycle_at: datetime | None = None
    last_cycle: CycleResult | None = None
    emails_ingested: int = 0
    pending_records: int = 0
    active_sessions: int = 0
