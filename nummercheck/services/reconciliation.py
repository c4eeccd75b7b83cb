"""Apply a normalized webhook delivery to lookups, attempts, and profiles.

Every write is a column-level, idempotent assignment keyed by
conversation id (falling back to lookup id). Data availability decides
the final state, so deliveries may arrive in any order.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nummercheck.db.call_attempts import (
    CallAttemptUpdate,
    get_call_attempt_by_conversation_id,
    get_latest_call_attempt,
    update_call_attempt,
)
from nummercheck.db.lookups import (
    get_latest_lookup_by_normalized,
    get_lookup_by_id,
    update_lookup_status,
)
from nummercheck.db.models import CallAttempt, PhoneLookup, PhoneProfile, utcnow
from nummercheck.db.profiles import (
    ProfileUpsert,
    fetch_profile_by_number,
    get_profile_by_id,
    upsert_phone_profile,
)
from nummercheck.services.event_classifier import (
    advance_lookup_status,
    classify,
    determine_lookup_status,
    is_post_call_transcription,
)
from nummercheck.services.identity_resolver import IdentityResolution, resolve_identity
from nummercheck.services.payload_normalizer import NormalizedPayload
from nummercheck.services.status_cache import StatusCache
from nummercheck.shared.errors import UpstreamWriteFailure
from nummercheck.shared.text import clean_caller_name, is_generic_label, pick_string
from nummercheck.shared.types import (
    UNKNOWN_CALLER,
    CallOutcome,
    CanonicalEvent,
    EntityTag,
    LookupStatus,
)

logger = logging.getLogger(__name__)

MAX_ALIASES = 5
SUMMARY_FALLBACK_CHARS = 240
TRANSCRIPT_PREVIEW_CHARS = 500
POST_CALL_STATUS = "post_call_transcription"


@dataclass
class WebhookOutcome:
    """What a webhook delivery changed.

    Attributes:
        conversation_id: Provider conversation id of the delivery.
        canonical_event: Classification of the delivery.
        lookup_id: Lookup the delivery was applied to, if any.
        lookup_status: Lookup status after the delivery.
        profile_id: Profile upserted for a completed call.
        note: Reason when nothing could be applied.
    """

    conversation_id: str
    canonical_event: CanonicalEvent
    lookup_id: uuid.UUID | None = None
    lookup_status: str | None = None
    profile_id: uuid.UUID | None = None
    note: str | None = None

    def to_response(self) -> dict[str, Any]:
        """Body returned to the provider."""
        body: dict[str, Any] = {"success": True}
        if self.note:
            body["note"] = self.note
        return body


async def _resolve_lookup(
    session: AsyncSession,
    normalized: NormalizedPayload,
    attempt: CallAttempt | None,
) -> PhoneLookup | None:
    if normalized.lookup_id:
        lookup = await get_lookup_by_id(session, normalized.lookup_id)
        if lookup is not None:
            return lookup
        logger.warning(
            "webhook_lookup_id_unknown",
            extra={
                "conversation_id": normalized.conversation_id,
                "lookup_id": normalized.lookup_id,
            },
        )
    if attempt is not None:
        lookup = await get_lookup_by_id(session, attempt.lookup_id)
        if lookup is not None:
            return lookup
    if normalized.normalized_number:
        return await get_latest_lookup_by_normalized(session, normalized.normalized_number)
    return None


# Order in which a call moves through canonical events; failure ends it
EVENT_RANK = {
    CanonicalEvent.UNKNOWN: 0,
    CanonicalEvent.INITIATION: 1,
    CanonicalEvent.IN_PROGRESS: 2,
    CanonicalEvent.POST_CALL: 3,
    CanonicalEvent.COMPLETED: 4,
    CanonicalEvent.FAILED: 4,
}


def attempt_stage(attempt: CallAttempt) -> CanonicalEvent:
    """Classify a stored attempt from its status columns and payload event."""
    payload = attempt.payload or {}
    vendor = " ".join(
        str(part)
        for part in (attempt.elevenlabs_status, payload.get("event") or payload.get("type"))
        if part
    )
    return classify(
        attempt.status,
        vendor,
        has_data=bool(attempt.transcript or attempt.summary),
    )


def _attempt_settled(attempt: CallAttempt, stage: CanonicalEvent) -> bool:
    """Whether an attempt already holds final data, a completion, or a failure."""
    if attempt.transcript or attempt.summary:
        return True
    return stage in (CanonicalEvent.COMPLETED, CanonicalEvent.FAILED)


def _regresses(stage: CanonicalEvent, canonical: CanonicalEvent) -> bool:
    if canonical == CanonicalEvent.UNKNOWN:
        return EVENT_RANK[stage] >= EVENT_RANK[CanonicalEvent.IN_PROGRESS]
    return EVENT_RANK[canonical] < EVENT_RANK[stage]


def build_attempt_update(
    normalized: NormalizedPayload,
    canonical: CanonicalEvent,
    attempt: CallAttempt,
) -> CallAttemptUpdate:
    """Compute the columns a delivery writes onto its call attempt.

    Args:
        normalized: Normalized webhook payload.
        canonical: Classification of the delivery.
        attempt: Attempt being updated, as currently stored.

    Returns:
        CallAttemptUpdate. Settled attempts, and attempts the delivery
        would move back to an earlier stage, only receive enrichment
        columns from deliveries without data.
    """
    has_data = normalized.has_completed_data
    explicit_post_call = is_post_call_transcription(normalized.event)

    stage = attempt_stage(attempt)
    upgrade = has_data or explicit_post_call
    if not upgrade and (_attempt_settled(attempt, stage) or _regresses(stage, canonical)):
        return CallAttemptUpdate(
            elevenlabs_conversation_id=normalized.conversation_id,
            confidence=normalized.confidence,
            ended_at=normalized.ended_at,
        )

    if upgrade:
        status = POST_CALL_STATUS
    else:
        status = (
            normalized.event
            or normalized.status
            or ("initiating" if attempt.status == "scheduled" else "connecting")
        )

    vendor_status = normalized.status
    if has_data or explicit_post_call or canonical in (
        CanonicalEvent.POST_CALL,
        CanonicalEvent.COMPLETED,
    ):
        vendor_status = normalized.status or normalized.event or POST_CALL_STATUS

    event = normalized.event or (POST_CALL_STATUS if has_data else None)
    payload = dict(normalized.payload)
    if event:
        payload["event"] = event
        payload["type"] = event

    error_message = None
    if canonical == CanonicalEvent.FAILED:
        error_message = pick_string(
            normalized.conversation.get("error"),
            normalized.conversation.get("failure_reason"),
            normalized.payload.get("error"),
            normalized.payload.get("message"),
        )

    return CallAttemptUpdate(
        status=status,
        elevenlabs_status=vendor_status,
        elevenlabs_conversation_id=normalized.conversation_id,
        payload=payload,
        transcript=normalized.transcript,
        summary=normalized.summary,
        confidence=normalized.confidence,
        ended_at=normalized.ended_at,
        error_message=error_message,
    )


def _merge_tags(
    existing: list[Any],
    metadata_tags: Any,
    entity_tag: EntityTag | None,
) -> list[str]:
    merged: dict[str, str] = {}
    incoming = metadata_tags if isinstance(metadata_tags, list) else []
    for tag in [*existing, *incoming]:
        if isinstance(tag, str) and tag.strip():
            merged[tag.strip().casefold()] = tag.strip()
    if entity_tag is not None:
        for other in EntityTag:
            if other != entity_tag:
                merged.pop(other.value.casefold(), None)
        merged[entity_tag.value.casefold()] = entity_tag.value
    return list(merged.values())


def _merge_aliases(
    existing: list[Any],
    resolution: IdentityResolution,
) -> list[str]:
    aliases: dict[str, str] = {}
    caller_key = resolution.caller_name.casefold()
    for value in [*existing, *resolution.person_candidates, *resolution.business_candidates]:
        cleaned = clean_caller_name(value)
        if cleaned is None or is_generic_label(cleaned):
            continue
        key = cleaned.casefold()
        if key == caller_key:
            continue
        aliases.setdefault(key, cleaned)
    return list(aliases.values())[:MAX_ALIASES]


def _call_outcome(
    metadata: dict[str, Any],
    summary: str | None,
    existing: PhoneProfile | None,
) -> str:
    candidate = metadata.get("callOutcome", metadata.get("call_outcome"))
    allowed = {outcome.value for outcome in CallOutcome}
    if isinstance(candidate, str) and candidate in allowed:
        return candidate
    if summary:
        return CallOutcome.CONFIRMED.value
    if existing is not None and existing.call_outcome in allowed:
        return existing.call_outcome
    return CallOutcome.PENDING.value


def build_profile_values(
    normalized: NormalizedPayload,
    resolution: IdentityResolution,
    existing: PhoneProfile | None,
) -> ProfileUpsert:
    """Merge a completed call into the stored profile of its number.

    Args:
        normalized: Normalized webhook payload.
        resolution: Identity cascade outcome.
        existing: Stored profile, if any.

    Returns:
        The full set of profile columns to write.
    """
    transcript = normalized.transcript
    existing_summary = existing.summary if existing is not None else None
    existing_preview = existing.transcript_preview if existing is not None else None

    summary = (
        normalized.summary
        or existing_summary
        or existing_preview
        or (transcript[:SUMMARY_FALLBACK_CHARS] if transcript else None)
    )
    preview = transcript or existing_preview or summary
    confidence = normalized.confidence
    if confidence is None and existing is not None:
        confidence = existing.confidence

    aliases = _merge_aliases(existing.aka or [] if existing is not None else [], resolution)
    if not aliases and existing is not None:
        aliases = list(existing.aka or [])

    last_checked = normalized.ended_at or normalized.event_timestamp
    if last_checked is None and existing is not None:
        # Replays of the stored delivery keep the time it was first applied
        if existing.elevenlabs_raw_response == normalized.payload:
            last_checked = existing.last_checked

    return ProfileUpsert(
        caller_name=resolution.caller_name or UNKNOWN_CALLER,
        summary=summary,
        transcript_preview=preview[:TRANSCRIPT_PREVIEW_CHARS] if preview else None,
        last_checked=last_checked or utcnow(),
        confidence=confidence,
        call_outcome=_call_outcome(normalized.metadata, normalized.summary, existing),
        entity_tag=resolution.entity_tag.value if resolution.entity_tag else None,
        tags=_merge_tags(
            existing.tags or [] if existing is not None else [],
            normalized.metadata.get("tags"),
            resolution.entity_tag,
        ),
        aka=aliases,
        name_source=resolution.name_source.value if resolution.name_source else None,
        entity_type_source=(
            resolution.entity_type_source.value if resolution.entity_type_source else None
        ),
        elevenlabs_raw_response=normalized.payload,
    )


async def _record_profile(
    session: AsyncSession,
    normalized: NormalizedPayload,
    lookup: PhoneLookup,
) -> PhoneProfile:
    number = lookup.normalized or normalized.normalized_number
    existing = None
    if lookup.profile_id is not None:
        existing = await get_profile_by_id(session, lookup.profile_id)
    if existing is None:
        existing = await fetch_profile_by_number(session, number)

    resolution = resolve_identity(normalized, existing)
    values = build_profile_values(normalized, resolution, existing)
    profile = await upsert_phone_profile(session, normalized=number, values=values)
    logger.info(
        "identity_resolved",
        extra={
            "lookup_id": str(lookup.id),
            "caller_name": resolution.caller_name,
            "entity_tag": resolution.entity_tag.value if resolution.entity_tag else None,
            "name_source": values.name_source,
        },
    )
    return profile


async def _apply(session: AsyncSession, normalized: NormalizedPayload) -> WebhookOutcome:
    has_data = normalized.has_completed_data
    canonical = classify(normalized.event, normalized.status, has_data=has_data)
    outcome = WebhookOutcome(
        conversation_id=normalized.conversation_id,
        canonical_event=canonical,
    )

    attempt = await get_call_attempt_by_conversation_id(session, normalized.conversation_id)
    lookup = await _resolve_lookup(session, normalized, attempt)
    if lookup is None:
        logger.warning(
            "webhook_lookup_missing",
            extra={"conversation_id": normalized.conversation_id},
        )
        outcome.note = "Lookup id missing"
        return outcome
    outcome.lookup_id = lookup.id

    if attempt is None:
        latest = await get_latest_call_attempt(session, lookup.id)
        if latest is not None and latest.elevenlabs_conversation_id in (
            None,
            normalized.conversation_id,
        ):
            attempt = latest

    if attempt is not None:
        update = build_attempt_update(normalized, canonical, attempt)
        await update_call_attempt(session, attempt, update)
    else:
        logger.warning(
            "webhook_call_attempt_missing",
            extra={
                "conversation_id": normalized.conversation_id,
                "lookup_id": str(lookup.id),
            },
        )

    proposed = determine_lookup_status(normalized.event, normalized.status, has_data=has_data)
    if proposed == LookupStatus.CACHED:
        profile = await _record_profile(session, normalized, lookup)
        outcome.profile_id = profile.id

    await update_lookup_status(
        session,
        lookup,
        status=advance_lookup_status(lookup.status, proposed),
        profile_id=outcome.profile_id,
    )
    outcome.lookup_status = lookup.status
    return outcome


async def apply_webhook(
    session: AsyncSession,
    normalized: NormalizedPayload,
    *,
    cache: StatusCache | None = None,
) -> WebhookOutcome:
    """Apply one webhook delivery and commit it.

    Args:
        session: Active database session.
        normalized: Normalized webhook payload.
        cache: Status cache to invalidate for the affected lookup.

    Returns:
        WebhookOutcome describing what changed.

    Raises:
        UpstreamWriteFailure: If any storage operation fails; the
            transaction has been rolled back.
    """
    try:
        outcome = await _apply(session, normalized)
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception(
            "webhook_write_failed",
            extra={"conversation_id": normalized.conversation_id},
        )
        raise UpstreamWriteFailure(str(exc)) from exc

    if cache is not None and outcome.lookup_id is not None:
        cache.invalidate(outcome.lookup_id)

    logger.info(
        "webhook_applied",
        extra={
            "conversation_id": outcome.conversation_id,
            "lookup_id": str(outcome.lookup_id) if outcome.lookup_id else None,
            "canonical_event": outcome.canonical_event.value,
            "lookup_status": outcome.lookup_status,
        },
    )
    return outcome
