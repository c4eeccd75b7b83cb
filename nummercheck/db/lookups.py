"""Lookup and reset operations on the operational database."""

import logging
import uuid

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from nummercheck.db.models import CallAttempt, PhoneLookup, PhoneProfile, as_uuid
from nummercheck.shared.types import LookupStatus

logger = logging.getLogger(__name__)


async def create_lookup(
    session: AsyncSession,
    *,
    normalized: str,
    raw_input: str,
    status: LookupStatus = LookupStatus.CALLING,
    profile_id: uuid.UUID | None = None,
) -> PhoneLookup:
    """Record a new lookup for a submitted number.

    Args:
        session: Active database session.
        normalized: Normalized phone number.
        raw_input: Number as typed by the user.
        status: Initial lookup status.
        profile_id: Existing profile when the number is already known.

    Returns:
        Created PhoneLookup record.
    """
    lookup = PhoneLookup(
        id=uuid.uuid4(),
        normalized=normalized,
        raw_input=raw_input,
        status=status.value,
        profile_id=profile_id,
    )
    session.add(lookup)
    await session.flush()
    return lookup


async def get_lookup_by_id(
    session: AsyncSession,
    lookup_id: uuid.UUID | str,
) -> PhoneLookup | None:
    """Fetch a lookup, always reloading committed column values.

    Args:
        session: Active database session.
        lookup_id: Lookup UUID or its string form.

    Returns:
        PhoneLookup if found, else None (also for malformed ids).
    """
    key = as_uuid(lookup_id)
    if key is None:
        return None
    result = await session.execute(
        select(PhoneLookup)
        .where(PhoneLookup.id == key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_latest_lookup_by_normalized(
    session: AsyncSession,
    normalized: str,
) -> PhoneLookup | None:
    """Return the most recently created lookup for a number.

    Args:
        session: Active database session.
        normalized: Normalized phone number.

    Returns:
        Newest PhoneLookup, or None.
    """
    result = await session.execute(
        select(PhoneLookup)
        .where(PhoneLookup.normalized == normalized)
        .order_by(PhoneLookup.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def update_lookup_status(
    session: AsyncSession,
    lookup: PhoneLookup,
    *,
    status: LookupStatus | None = None,
    profile_id: uuid.UUID | None = None,
) -> bool:
    """Write status and profile reference onto a lookup.

    Only changed columns are flushed, so repeating the same write does
    not bump ``updated_at``.

    Args:
        session: Active database session.
        lookup: Lookup to update.
        status: New status, or None to keep the current one.
        profile_id: Profile to link, or None to keep the current one.

    Returns:
        True if any column changed.
    """
    changed = False
    if status is not None and lookup.status != status.value:
        lookup.status = status.value
        changed = True
    if profile_id is not None and lookup.profile_id != profile_id:
        lookup.profile_id = profile_id
        changed = True
    if changed:
        await session.flush()
        logger.info(
            "lookup_status_updated",
            extra={
                "lookup_id": str(lookup.id),
                "status": lookup.status,
                "profile_id": str(lookup.profile_id) if lookup.profile_id else None,
            },
        )
    return changed


async def reset_lookup_data(session: AsyncSession) -> dict[str, int]:
    """Delete all attempts, lookups, and profiles.

    Args:
        session: Active database session.

    Returns:
        Deleted row counts per table.
    """
    counts = {}
    for model in (CallAttempt, PhoneLookup, PhoneProfile):
        result = await session.execute(delete(model))
        counts[model.__tablename__] = result.rowcount or 0
    await session.flush()
    logger.warning("lookup_data_reset", extra=counts)
    return counts
