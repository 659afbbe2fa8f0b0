"""SQLAlchemy ORM models for stored emails and their tags."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


class Email(Base):
    __tablename__ = "emails"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date: Mapped[str] = mapped_column(Text, nullable=False, default="")
    from_addresses: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    to_addresses: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    tags: Mapped[list[EmailTag]] = relationship(
        back_populates="email",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="EmailTag.tag",
    )


class EmailTag(Base):
    """One tag on one email.  The composite primary key gives set semantics."""

    __tablename__ = "email_tags"

    email_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("emails.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag: Mapped[str] = mapped_column(Text, primary_key=True)

    email: Mapped[Email] = relationship(back_populates="tags")
