"""Call attempt records written by the orchestrator and the webhook."""

import logging
import uuid
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nummercheck.db.models import CallAttempt, as_uuid, values_equal

logger = logging.getLogger(__name__)


@dataclass
class CallAttemptUpdate:
    """Column values to write onto a call attempt.

    None means "leave the column alone"; webhooks never blank out a
    column that an earlier delivery filled.
    """

    status: str | None = None
    elevenlabs_status: str | None = None
    elevenlabs_conversation_id: str | None = None
    payload: dict[str, Any] | None = None
    transcript: str | None = None
    summary: str | None = None
    confidence: float | None = None
    ended_at: datetime | None = None
    error_message: str | None = None

    def columns(self) -> dict[str, Any]:
        """Return the provided (non-None) column values."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


async def record_call_attempt(
    session: AsyncSession,
    *,
    lookup_id: uuid.UUID,
    status: str,
    conversation_id: str | None = None,
    elevenlabs_status: str | None = None,
    error_message: str | None = None,
    payload: dict[str, Any] | None = None,
) -> CallAttempt:
    """Record a call placed (or attempted) for a lookup.

    Args:
        session: Active database session.
        lookup_id: Owning lookup.
        status: Initial status, usually "scheduled".
        conversation_id: Provider conversation id, if already known.
        elevenlabs_status: Vendor status at scheduling time.
        error_message: Failure reason when the call could not start.
        payload: Provider response to the call request.

    Returns:
        Created CallAttempt record.
    """
    attempt = CallAttempt(
        id=uuid.uuid4(),
        lookup_id=lookup_id,
        status=status,
        elevenlabs_conversation_id=conversation_id,
        elevenlabs_status=elevenlabs_status,
        error_message=error_message,
        payload=payload,
    )
    session.add(attempt)
    await session.flush()
    return attempt


async def get_latest_call_attempt(
    session: AsyncSession,
    lookup_id: uuid.UUID | str,
) -> CallAttempt | None:
    """Return the active (most recently updated) attempt of a lookup.

    Args:
        session: Active database session.
        lookup_id: Owning lookup.

    Returns:
        CallAttempt with freshly loaded columns, or None.
    """
    key = as_uuid(lookup_id)
    if key is None:
        return None
    result = await session.execute(
        select(CallAttempt)
        .where(CallAttempt.lookup_id == key)
        .order_by(CallAttempt.updated_at.desc(), CallAttempt.requested_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_call_attempt_by_conversation_id(
    session: AsyncSession,
    conversation_id: str,
) -> CallAttempt | None:
    """Find the attempt that owns a provider conversation.

    Args:
        session: Active database session.
        conversation_id: Provider conversation id.

    Returns:
        CallAttempt if found, else None.
    """
    result = await session.execute(
        select(CallAttempt)
        .where(CallAttempt.elevenlabs_conversation_id == conversation_id)
        .order_by(CallAttempt.requested_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def update_call_attempt(
    session: AsyncSession,
    attempt: CallAttempt,
    update: CallAttemptUpdate,
) -> list[str]:
    """Apply column-level changes to an attempt.

    Columns whose value is unchanged are not assigned, so re-applying
    the same update emits no UPDATE and leaves ``updated_at`` alone.

    Args:
        session: Active database session.
        attempt: Attempt to modify.
        update: Values to write.

    Returns:
        Names of the columns that actually changed.
    """
    changed = []
    for column, value in update.columns().items():
        if values_equal(getattr(attempt, column), value):
            continue
        setattr(attempt, column, value)
        changed.append(column)
    if changed:
        await session.flush()
        logger.info(
            "call_attempt_updated",
            extra={
                "call_attempt_id": str(attempt.id),
                "lookup_id": str(attempt.lookup_id),
                "columns": changed,
            },
        )
    return changed
