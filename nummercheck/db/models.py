"""SQLAlchemy ORM models for lookups, call attempts, and phone profiles."""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from nummercheck.shared.types import CallOutcome, LookupStatus

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_uuid(value: uuid.UUID | str | None) -> uuid.UUID | None:
    """Parse a primary key, returning None for anything that is not a UUID."""
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def values_equal(current: Any, new: Any) -> bool:
    """Compare a stored column value with a value about to be written.

    Naive datetimes (SQLite drops the offset) are read as UTC.
    """
    if isinstance(current, datetime) and isinstance(new, datetime):
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        if new.tzinfo is None:
            new = new.replace(tzinfo=timezone.utc)
        return current == new
    return current == new


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class PhoneProfile(Base):
    """Durable identity record for one normalized phone number.

    Attributes:
        id: Primary key UUID.
        normalized: Normalized number; unique.
        aka: Alias names seen on earlier calls, at most five.
        tags: Free-form labels including the entity tag.
    """

    __tablename__ = "phone_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    normalized: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    caller_name: Mapped[str | None] = mapped_column(String(200))
    aka: Mapped[list] = mapped_column(JsonColumn, default=list)
    summary: Mapped[str | None] = mapped_column(Text)
    transcript_preview: Mapped[str | None] = mapped_column(Text)
    last_checked: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confidence: Mapped[float | None] = mapped_column(Float)
    call_outcome: Mapped[str] = mapped_column(String(20), default=CallOutcome.PENDING.value)
    entity_tag: Mapped[str | None] = mapped_column(String(20))
    tags: Mapped[list] = mapped_column(JsonColumn, default=list)
    reports_confirmed: Mapped[int] = mapped_column(Integer, default=0)
    reports_disputed: Mapped[int] = mapped_column(Integer, default=0)
    name_source: Mapped[str | None] = mapped_column(String(20))
    entity_type_source: Mapped[str | None] = mapped_column(String(20))
    elevenlabs_raw_response: Mapped[dict | None] = mapped_column(JsonColumn)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class PhoneLookup(Base):
    """One user-initiated inquiry for a phone number.

    Attributes:
        id: Primary key UUID.
        status: pending, calling, cached, not_found, or failed.
        profile_id: Profile resolved for this lookup, once known.
    """

    __tablename__ = "phone_lookups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    normalized: Mapped[str] = mapped_column(String(32), index=True)
    raw_input: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(20), default=LookupStatus.PENDING.value)
    profile_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("phone_profiles.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class CallAttempt(Base):
    """One outbound AI call placed for a lookup.

    Attributes:
        id: Primary key UUID.
        status: Internal status string written by the orchestrator and webhooks.
        elevenlabs_status: Raw vendor status, kept for display and diagnostics.
        payload: Last webhook payload applied to this attempt.
    """

    __tablename__ = "call_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lookup_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("phone_lookups.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[str] = mapped_column(String(64))
    elevenlabs_conversation_id: Mapped[str | None] = mapped_column(String(128), index=True)
    elevenlabs_status: Mapped[str | None] = mapped_column(String(64))
    error_message: Mapped[str | None] = mapped_column(Text)
    payload: Mapped[dict | None] = mapped_column(JsonColumn)
    transcript: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[str | None] = mapped_column(Text)
    confidence: Mapped[float | None] = mapped_column(Float)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )
