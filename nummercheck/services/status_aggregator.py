"""Compose consistent lookup status snapshots for polling clients.

The lookup row and its call attempt are written by separate webhook
steps, so a single read can show contradictory state (lookup cached,
attempt still "initiating"). Reads are repeated at fixed intervals until
the pair is consistent or the retry budget runs out, then the best
available snapshot is returned.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from nummercheck.config.settings import Settings
from nummercheck.db.call_attempts import get_latest_call_attempt
from nummercheck.db.lookups import get_lookup_by_id
from nummercheck.db.models import CallAttempt, PhoneLookup, PhoneProfile, as_uuid
from nummercheck.db.profiles import fetch_profile_by_number, get_profile_by_id
from nummercheck.services.reconciliation import attempt_stage
from nummercheck.services.status_cache import StatusCache, compute_etag
from nummercheck.shared.errors import StaleReadTimeout
from nummercheck.shared.types import (
    TERMINAL_LOOKUP_STATUSES,
    CanonicalEvent,
    LookupStatus,
)

logger = logging.getLogger(__name__)

# Hard ceiling on time spent sleeping inside one status request
MAX_TOTAL_WAIT_SECONDS = 10.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded fixed-interval retry budget for status reads."""

    initial_delay: float = 0.05
    interval: float = 0.5
    max_retries: int = 4
    max_total_wait: float = MAX_TOTAL_WAIT_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            initial_delay=settings.status_initial_delay_seconds,
            interval=settings.status_retry_interval_seconds,
            max_retries=settings.status_max_retries,
            max_total_wait=min(settings.status_max_wait_seconds, MAX_TOTAL_WAIT_SECONDS),
        )


@dataclass(frozen=True)
class StatusSnapshot:
    """Response body plus HTTP validators for one lookup.

    Attributes:
        body: ``{"lookup", "callAttempt", "profile"}`` payload.
        etag: Quoted validator derived from the freshest update.
        last_modified: Freshest ``updated_at`` among the rows.
        terminal: Whether the lookup reached a final status.
        converged: False when the retry budget ran out while stale.
    """

    body: dict[str, Any]
    etag: str
    last_modified: datetime | None
    terminal: bool
    converged: bool = True


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _aware(value).isoformat()


def _has_data(attempt: CallAttempt) -> bool:
    return bool(attempt.transcript or attempt.summary)


def stale_reasons(
    previous_status: str | None,
    lookup: PhoneLookup,
    attempt: CallAttempt | None,
) -> list[str]:
    """Evaluate the staleness predicates for one read.

    Args:
        previous_status: Lookup status seen on the previous read.
        lookup: Freshly read lookup.
        attempt: Freshly read active call attempt.

    Returns:
        Names of the predicates that hold; empty when consistent.
    """
    reasons = []
    if previous_status is not None and previous_status != lookup.status:
        reasons.append("lookup_status_changed")
    if attempt is None:
        return reasons
    event = attempt_stage(attempt)
    if lookup.status == LookupStatus.CACHED.value and event in (
        CanonicalEvent.INITIATION,
        CanonicalEvent.IN_PROGRESS,
    ):
        reasons.append("stale_completion")
    if event in (CanonicalEvent.POST_CALL, CanonicalEvent.COMPLETED) and not _has_data(attempt):
        reasons.append("post_call_without_data")
    return reasons


def _lookup_view(lookup: PhoneLookup) -> dict[str, Any]:
    return {
        "id": str(lookup.id),
        "normalized": lookup.normalized,
        "raw_input": lookup.raw_input,
        "status": lookup.status,
        "profile_id": str(lookup.profile_id) if lookup.profile_id else None,
        "created_at": _iso(lookup.created_at),
        "updated_at": _iso(lookup.updated_at),
    }


def _profile_covers_attempt(
    lookup: PhoneLookup,
    attempt: CallAttempt,
    profile: PhoneProfile,
) -> bool:
    """Whether profile fields may stand in for the attempt's own columns.

    A profile left over from an earlier call of the same number must not
    make a fresh attempt look finished.
    """
    if lookup.status == LookupStatus.CACHED.value:
        return True
    if profile.updated_at is None or attempt.requested_at is None:
        return False
    return _aware(profile.updated_at) >= _aware(attempt.requested_at)


def _attempt_view(attempt: CallAttempt, profile: PhoneProfile | None) -> dict[str, Any]:
    summary = attempt.summary
    transcript = attempt.transcript
    confidence = attempt.confidence
    if profile is not None:
        summary = summary or profile.summary
        transcript = transcript or profile.transcript_preview
        confidence = confidence if confidence is not None else profile.confidence
    return {
        "id": str(attempt.id),
        "lookup_id": str(attempt.lookup_id),
        "status": attempt.status,
        "elevenlabs_conversation_id": attempt.elevenlabs_conversation_id,
        "elevenlabs_status": attempt.elevenlabs_status,
        "error_message": attempt.error_message,
        "payload": attempt.payload,
        "transcript": transcript,
        "summary": summary,
        "confidence": confidence,
        "requested_at": _iso(attempt.requested_at),
        "ended_at": _iso(attempt.ended_at),
        "updated_at": _iso(attempt.updated_at),
    }


def profile_view(profile: PhoneProfile) -> dict[str, Any]:
    """Client-facing projection of a stored profile."""
    return {
        "id": str(profile.id),
        "normalized": profile.normalized,
        "callerName": profile.caller_name,
        "aka": list(profile.aka or []),
        "summary": profile.summary,
        "transcriptPreview": profile.transcript_preview,
        "lastChecked": _iso(profile.last_checked),
        "confidence": profile.confidence,
        "callOutcome": profile.call_outcome,
        "entityTag": profile.entity_tag,
        "tags": list(profile.tags or []),
        "reportsConfirmed": profile.reports_confirmed,
        "reportsDisputed": profile.reports_disputed,
        "nameSource": profile.name_source,
        "entityTypeSource": profile.entity_type_source,
    }


def compose_snapshot(
    lookup: PhoneLookup,
    attempt: CallAttempt | None,
    profile: PhoneProfile | None,
    *,
    converged: bool = True,
) -> StatusSnapshot:
    """Merge lookup, attempt, and profile rows into a snapshot.

    Args:
        lookup: Lookup row.
        attempt: Active call attempt, if any.
        profile: Profile of the number, if any.
        converged: Whether the reads reached a consistent state.

    Returns:
        StatusSnapshot with ETag and Last-Modified.
    """
    timestamps = [lookup.updated_at, lookup.created_at]
    if attempt is not None:
        timestamps += [attempt.updated_at, attempt.requested_at]
    if profile is not None:
        timestamps.append(profile.updated_at)
    aware = [_aware(ts) for ts in timestamps if ts is not None]
    freshest = max(aware) if aware else None

    etag = compute_etag(
        freshest,
        lookup.status,
        attempt.id if attempt is not None else "-",
        profile.id if profile is not None else "-",
    )
    fallback = None
    if attempt is not None and profile is not None:
        if _profile_covers_attempt(lookup, attempt, profile):
            fallback = profile
    body = {
        "lookup": _lookup_view(lookup),
        "callAttempt": _attempt_view(attempt, fallback) if attempt is not None else None,
        "profile": profile_view(profile) if profile is not None else None,
    }
    return StatusSnapshot(
        body=body,
        etag=etag,
        last_modified=freshest,
        terminal=LookupStatus(lookup.status) in TERMINAL_LOOKUP_STATUSES,
        converged=converged,
    )


async def _load_profile(session: AsyncSession, lookup: PhoneLookup) -> PhoneProfile | None:
    if lookup.profile_id is not None:
        profile = await get_profile_by_id(session, lookup.profile_id)
        if profile is not None:
            return profile
    return await fetch_profile_by_number(session, lookup.normalized)


async def load_status_snapshot(
    session: AsyncSession,
    lookup_id: str,
    *,
    policy: RetryPolicy | None = None,
    cache: StatusCache | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> StatusSnapshot | None:
    """Read a lookup's status, retrying until lookup and attempt agree.

    Args:
        session: Active database session.
        lookup_id: Lookup to read.
        policy: Retry budget.
        cache: Status cache to serve from and populate.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock used for the hard wait cap.

    Returns:
        StatusSnapshot, or None when the lookup does not exist.
    """
    policy = policy or RetryPolicy()
    cache_key = as_uuid(lookup_id) or lookup_id

    if cache is not None:
        entry = cache.get(cache_key)
        if entry is not None:
            return StatusSnapshot(
                body=entry.snapshot,
                etag=entry.etag,
                last_modified=entry.last_modified,
                terminal=entry.terminal,
            )

    lookup = await get_lookup_by_id(session, lookup_id)
    if lookup is None:
        return None

    deadline = clock() + policy.max_total_wait
    previous_status: str | None = lookup.status
    retries = 0
    converged = True

    if policy.initial_delay > 0:
        await sleep(min(policy.initial_delay, policy.max_total_wait))

    while True:
        lookup = await get_lookup_by_id(session, lookup_id)
        if lookup is None:
            return None
        attempt = await get_latest_call_attempt(session, lookup.id)

        reasons = stale_reasons(previous_status, lookup, attempt)
        if not reasons:
            break
        if retries >= policy.max_retries or clock() + policy.interval > deadline:
            converged = False
            timeout = StaleReadTimeout(str(lookup.id), reasons)
            logger.warning(
                "stale_read_timeout",
                extra={"lookup_id": timeout.lookup_id, "reasons": timeout.reasons, "retries": retries},
            )
            break

        logger.debug(
            "status_read_retry",
            extra={"lookup_id": str(lookup.id), "reasons": reasons, "retry": retries + 1},
        )
        previous_status = lookup.status
        retries += 1
        await sleep(policy.interval)

    profile = await _load_profile(session, lookup)
    snapshot = compose_snapshot(lookup, attempt, profile, converged=converged)

    if cache is not None:
        cache.set(
            lookup.id,
            snapshot.body,
            etag=snapshot.etag,
            last_modified=snapshot.last_modified,
            terminal=snapshot.terminal,
        )
    return snapshot
