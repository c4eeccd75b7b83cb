"""Client-side progress and result derivation from status snapshots.

Uses the same canonical-event classification as the webhook path, so the
displayed stage never trails the backend's own view of the call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from nummercheck.services.event_classifier import classify
from nummercheck.services.identity_resolver import derive_entity_tag
from nummercheck.shared.text import normalize_status
from nummercheck.shared.types import (
    UNKNOWN_CALLER,
    CanonicalEvent,
    LookupStatus,
    ProgressStage,
    StageState,
)

STAGES = tuple(ProgressStage)

STATUS_LABELS = {
    "scheduled": "Call ingepland",
    "initiating": "Call wordt gestart",
    "initiate": "Call wordt gestart",
    "connecting": "Verbinden met nummer",
    "ringing": "Nummer gaat over",
    "ringing_answered": "Gesprek gestart",
    "call_started": "Gesprek gestart",
    "call_initiated": "Gesprek gestart",
    "conversation_initiated": "Gesprek wordt gestart",
    "in_progress": "Gesprek bezig",
    "in-progress": "Gesprek bezig",
    "conversation_started": "Gesprek bezig",
    "post_call_analysis_started": "Analyse gestart",
    "post_call_analysis_completed": "Analyse afgerond",
    "post_call_summary_created": "Samenvatting gegenereerd",
    "post_call_transcription": "Transcript ontvangen",
    "transcribing": "Transcript wordt gemaakt",
    "analysis": "Analyse bezig",
    "analyzing": "Analyse bezig",
    "completed": "Gesprek afgerond",
    "success": "Succesvol afgerond",
    "succeeded": "Succesvol afgerond",
    "failed": "Gesprek mislukt",
    "error": "Fout opgetreden",
    "no_answer": "Geen gehoor",
    "busy": "Lijn bezet",
}

SUMMARY_PLACEHOLDER = "Samenvatting volgt zodra de agent klaar is."
CALL_FAILED_MESSAGE = "De AI-call is mislukt. Probeer het later opnieuw."
CALL_NOT_STARTED_MESSAGE = "De AI-call kon niet worden gestart. Probeer het later opnieuw."


@dataclass(frozen=True)
class ProgressState:
    """Three-stage progress indicator state.

    Attributes:
        active_index: Index into STAGES of the current stage.
        states: Rendering state per stage.
        has_failure: Whether the call failed.
        percentage: Progress bar fill, 0 to 100.
    """

    active_index: int
    states: dict[ProgressStage, StageState]
    has_failure: bool
    percentage: int


@dataclass
class LookupResultView:
    """What the lookup result card shows.

    Attributes:
        state: "calling", "cached", or "failed".
        failure: "call_failed" or "call_not_started" for failed lookups.
    """

    state: str
    normalized: str | None = None
    caller_name: str | None = None
    summary: str | None = None
    confidence: float | None = None
    last_checked: str | None = None
    tags: list[str] = field(default_factory=list)
    failure: str | None = None
    message: str | None = None


def format_status_label(value: Any) -> str | None:
    """Human-readable Dutch label for a vendor or internal status.

    Args:
        value: Raw status, possibly byte-string quoted.

    Returns:
        Known label, else the status title-cased; None for empty input.
    """
    normalized = normalize_status(value)
    if not normalized:
        return None
    if normalized in STATUS_LABELS:
        return STATUS_LABELS[normalized]
    words = re.sub(r"[_\-\s]+", " ", normalized).strip().split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def _attempt_has_data(attempt: dict[str, Any]) -> bool:
    return bool(attempt.get("summary") or attempt.get("transcript"))


def classify_attempt(attempt: dict[str, Any]) -> CanonicalEvent:
    """Classify a serialized call attempt from its status columns and payload event."""
    payload = attempt.get("payload") if isinstance(attempt.get("payload"), dict) else {}
    vendor = " ".join(
        str(part)
        for part in (attempt.get("elevenlabs_status"), payload.get("event"), payload.get("type"))
        if part
    )
    return classify(attempt.get("status"), vendor, has_data=_attempt_has_data(attempt))


def derive_progress(
    attempt: dict[str, Any] | None,
    lookup_status: str | None,
) -> ProgressState:
    """Map a snapshot onto the scheduled -> analyzing -> completed stages.

    Args:
        attempt: Serialized call attempt from the status endpoint.
        lookup_status: Lookup status from the same snapshot.

    Returns:
        ProgressState for rendering.
    """
    if attempt is None:
        states = {stage: StageState.UPCOMING for stage in STAGES}
        return ProgressState(
            active_index=0,
            states=states,
            has_failure=lookup_status == LookupStatus.FAILED.value,
            percentage=0,
        )

    event = classify_attempt(attempt)
    has_data = _attempt_has_data(attempt)
    has_failure = lookup_status == LookupStatus.FAILED.value or event == CanonicalEvent.FAILED
    completed = lookup_status == LookupStatus.CACHED.value or (
        has_data and event in (CanonicalEvent.POST_CALL, CanonicalEvent.COMPLETED)
    )

    status = normalize_status(attempt.get("status"))
    vendor = normalize_status(attempt.get("elevenlabs_status"))
    just_scheduled = "scheduled" in (status, vendor) or (not status and not vendor)

    last = len(STAGES) - 1
    if completed:
        active = last
    elif event in (CanonicalEvent.POST_CALL, CanonicalEvent.COMPLETED) or has_data:
        active = 1
    elif just_scheduled:
        active = 0
    else:
        active = 1

    states = {}
    for index, stage in enumerate(STAGES):
        if index < active:
            states[stage] = StageState.COMPLETE
        elif index > active:
            states[stage] = StageState.UPCOMING
        elif has_failure and not completed:
            states[stage] = StageState.ERROR
        elif completed and index == last:
            states[stage] = StageState.COMPLETE
        else:
            states[stage] = StageState.ACTIVE

    return ProgressState(
        active_index=active,
        states=states,
        has_failure=has_failure and not completed,
        percentage=round(active / last * 100),
    )


def is_terminal_snapshot(snapshot: dict[str, Any]) -> bool:
    """Whether polling can stop: lookup finished or attempt holds final data."""
    lookup = snapshot.get("lookup") or {}
    if lookup.get("status") in (LookupStatus.CACHED.value, LookupStatus.FAILED.value):
        return True
    attempt = snapshot.get("callAttempt")
    if attempt is None:
        return False
    return _attempt_has_data(attempt) and classify_attempt(attempt) in (
        CanonicalEvent.POST_CALL,
        CanonicalEvent.COMPLETED,
    )


def build_result_view(snapshot: dict[str, Any]) -> LookupResultView:
    """Derive the result card from a status snapshot.

    Args:
        snapshot: ``{"lookup", "callAttempt", "profile"}`` body.

    Returns:
        LookupResultView. Parsing ambiguity never surfaces here; at
        worst the caller is shown as unknown.
    """
    lookup = snapshot.get("lookup") or {}
    attempt = snapshot.get("callAttempt") or {}
    profile = snapshot.get("profile") or {}
    normalized = profile.get("normalized") or lookup.get("normalized") or lookup.get("raw_input")

    if lookup.get("status") == LookupStatus.FAILED.value and not _attempt_has_data(attempt):
        started = bool(attempt.get("elevenlabs_conversation_id"))
        return LookupResultView(
            state="failed",
            normalized=normalized,
            failure="call_failed" if started else "call_not_started",
            message=CALL_FAILED_MESSAGE if started else CALL_NOT_STARTED_MESSAGE,
        )

    if not is_terminal_snapshot(snapshot):
        return LookupResultView(state="calling", normalized=normalized)

    summary = profile.get("summary") or attempt.get("summary") or attempt.get("transcript")
    caller_name = profile.get("callerName") or UNKNOWN_CALLER
    tags = [tag for tag in profile.get("tags") or [] if isinstance(tag, str) and tag.strip()]
    if not tags:
        tag = derive_entity_tag(
            summary=summary,
            caller_name=caller_name,
            metadata={},
            analysis={},
        )
        tags = [tag.value] if tag else []

    confidence = profile.get("confidence")
    if confidence is None:
        confidence = attempt.get("confidence")

    return LookupResultView(
        state="cached",
        normalized=normalized,
        caller_name=caller_name,
        summary=summary or SUMMARY_PLACEHOLDER,
        confidence=confidence,
        last_checked=profile.get("lastChecked") or attempt.get("updated_at"),
        tags=tags,
    )
