"""Phone profile reads and the keyed upsert."""

import logging
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from nummercheck.db.models import PhoneProfile, as_uuid, values_equal

logger = logging.getLogger(__name__)


@dataclass
class ProfileUpsert:
    """Full set of profile columns computed for a completed call."""

    caller_name: str
    summary: str | None = None
    transcript_preview: str | None = None
    last_checked: datetime | None = None
    confidence: float | None = None
    call_outcome: str = "pending"
    entity_tag: str | None = None
    tags: list[str] = field(default_factory=list)
    aka: list[str] = field(default_factory=list)
    name_source: str | None = None
    entity_type_source: str | None = None
    elevenlabs_raw_response: dict[str, Any] | None = None


async def fetch_profile_by_number(
    session: AsyncSession,
    normalized: str,
) -> PhoneProfile | None:
    """Look up the profile of a normalized number.

    Args:
        session: Active database session.
        normalized: Normalized phone number.

    Returns:
        PhoneProfile if found, else None.
    """
    result = await session.execute(
        select(PhoneProfile)
        .where(PhoneProfile.normalized == normalized)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_profile_by_id(
    session: AsyncSession,
    profile_id: uuid.UUID | str,
) -> PhoneProfile | None:
    """Look up a profile by primary key.

    Args:
        session: Active database session.
        profile_id: Profile UUID.

    Returns:
        PhoneProfile if found, else None.
    """
    key = as_uuid(profile_id)
    if key is None:
        return None
    result = await session.execute(
        select(PhoneProfile)
        .where(PhoneProfile.id == key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _apply(profile: PhoneProfile, values: ProfileUpsert) -> list[str]:
    changed = []
    for f in fields(values):
        value = getattr(values, f.name)
        if values_equal(getattr(profile, f.name), value):
            continue
        setattr(profile, f.name, value)
        changed.append(f.name)
    return changed


async def upsert_phone_profile(
    session: AsyncSession,
    *,
    normalized: str,
    values: ProfileUpsert,
) -> PhoneProfile:
    """Insert or update the single profile of a number.

    A concurrent insert for the same number is caught inside a
    SAVEPOINT and retried as an update.

    Args:
        session: Active database session.
        normalized: Normalized phone number (the upsert key).
        values: Columns to write.

    Returns:
        The stored PhoneProfile.
    """
    profile = await fetch_profile_by_number(session, normalized)
    if profile is None:
        candidate = PhoneProfile(id=uuid.uuid4(), normalized=normalized)
        _apply(candidate, values)
        try:
            async with session.begin_nested():
                session.add(candidate)
            logger.info(
                "phone_profile_created",
                extra={"profile_id": str(candidate.id), "normalized": normalized},
            )
            return candidate
        except IntegrityError:
            logger.info("phone_profile_insert_race", extra={"normalized": normalized})
            profile = await fetch_profile_by_number(session, normalized)
            if profile is None:
                raise

    changed = _apply(profile, values)
    if changed:
        await session.flush()
        logger.info(
            "phone_profile_updated",
            extra={"profile_id": str(profile.id), "columns": changed},
        )
    return profile
