"""Classify vendor event/status text into canonical call events.

Vendor status text is advisory: a delivery that carries a transcript or
summary is never classified as failed, whatever its status string says.
"""

import re

from nummercheck.shared.text import normalize_status
from nummercheck.shared.types import (
    TERMINAL_LOOKUP_STATUSES,
    CanonicalEvent,
    LookupStatus,
)

INITIATION_KEYWORDS = (
    "initiat",
    "connecting",
    "ringing",
    "dialing",
    "dialling",
    "scheduled",
    "queued",
)
IN_PROGRESS_KEYWORDS = (
    "in_progress",
    "in-progress",
    "call_started",
    "conversation_started",
    "answered",
    "ongoing",
    "speaking",
    "active",
)
POST_CALL_KEYWORDS = (
    "post_call",
    "post-call",
    "analysis",
    "analysing",
    "analyzing",
    "transcript",
    "transcribing",
    "transcription",
    "summary",
    "processing",
)
COMPLETED_KEYWORDS = (
    "complete",
    "finished",
    "success",
    "succeeded",
    "done",
    "resolved",
    "cached",
)
FAILED_KEYWORDS = (
    "failed",
    "failure",
    "error",
    "timeout",
    "cancel",
    "hangup",
    "no_answer",
    "no-answer",
    "busy",
)

# Negated completion words ("unsuccessful", "not_completed") mean the call failed
NEGATED_COMPLETION_KEYWORDS = (
    "unsuccess",
    "incomplet",
    "uncomplet",
    "unfinish",
    "unresolv",
)
_NOT_COMPLETED = re.compile(
    r"\bnot[_\-\s]+(?:" + "|".join(COMPLETED_KEYWORDS) + ")"
)

# Event names that mean the transcript webhook itself has been delivered
POST_CALL_TRANSCRIPTION_EVENTS = ("post_call_transcription", "post-call-transcription")


def _contains(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def _negates_completion(text: str) -> bool:
    return _contains(text, NEGATED_COMPLETION_KEYWORDS) or _NOT_COMPLETED.search(text) is not None


def classify(
    event_name: str | None,
    vendor_status: str | None,
    *,
    has_data: bool = False,
) -> CanonicalEvent:
    """Map event name and vendor status onto a CanonicalEvent.

    Args:
        event_name: Webhook event or type, possibly byte-string quoted.
        vendor_status: Vendor conversation status.
        has_data: Whether a non-empty transcript or summary is present.

    Returns:
        The canonical event. With data present the result is always
        COMPLETED or POST_CALL.
    """
    event = normalize_status(event_name)
    status = normalize_status(vendor_status)
    combined = f"{event} {status}".strip()

    negated = _negates_completion(combined)
    if has_data:
        if _contains(combined, COMPLETED_KEYWORDS) and not negated:
            return CanonicalEvent.COMPLETED
        return CanonicalEvent.POST_CALL

    if not combined:
        return CanonicalEvent.UNKNOWN
    if negated or _contains(combined, FAILED_KEYWORDS):
        return CanonicalEvent.FAILED
    if _contains(combined, COMPLETED_KEYWORDS):
        return CanonicalEvent.COMPLETED
    if _contains(combined, POST_CALL_KEYWORDS):
        return CanonicalEvent.POST_CALL
    if _contains(combined, IN_PROGRESS_KEYWORDS):
        return CanonicalEvent.IN_PROGRESS
    if _contains(combined, INITIATION_KEYWORDS):
        return CanonicalEvent.INITIATION
    return CanonicalEvent.UNKNOWN


def is_post_call_transcription(event_name: str | None) -> bool:
    """Whether the event explicitly announces the post-call transcript."""
    return _contains(normalize_status(event_name), POST_CALL_TRANSCRIPTION_EVENTS)


def determine_lookup_status(
    event_name: str | None,
    vendor_status: str | None,
    *,
    has_data: bool = False,
) -> LookupStatus | None:
    """Derive the lookup status a webhook delivery argues for.

    Args:
        event_name: Webhook event or type.
        vendor_status: Vendor conversation status.
        has_data: Whether a non-empty transcript or summary is present.

    Returns:
        CACHED, FAILED, or CALLING; None when the delivery says nothing
        about the call's progress.
    """
    if has_data or is_post_call_transcription(event_name):
        return LookupStatus.CACHED
    canonical = classify(event_name, vendor_status)
    if canonical == CanonicalEvent.COMPLETED:
        return LookupStatus.CACHED
    if canonical == CanonicalEvent.FAILED:
        return LookupStatus.FAILED
    if canonical in (
        CanonicalEvent.INITIATION,
        CanonicalEvent.IN_PROGRESS,
        CanonicalEvent.POST_CALL,
    ):
        return LookupStatus.CALLING
    return None


def advance_lookup_status(
    current: LookupStatus | str | None,
    proposed: LookupStatus | None,
) -> LookupStatus | None:
    """Apply the monotonic pending -> calling -> cached|failed transition.

    A terminal failure may still be upgraded to ``cached`` when success
    data arrives late; ``cached`` never changes.

    Args:
        current: Status stored on the lookup.
        proposed: Status derived from the latest delivery.

    Returns:
        The status to store, or None when nothing should change.
    """
    if proposed is None:
        return None
    current_status = LookupStatus(current) if current else LookupStatus.PENDING
    if current_status == proposed:
        return None
    if current_status == LookupStatus.CACHED:
        return None
    if current_status in TERMINAL_LOOKUP_STATUSES:
        return proposed if proposed == LookupStatus.CACHED else None
    if current_status == LookupStatus.CALLING and proposed == LookupStatus.PENDING:
        return None
    return proposed
