"""Normalize ElevenLabs webhook payloads of varying shape.

The provider nests the same logical fields under ``conversation``,
``data``, or the top level depending on webhook type and API version.
Every logical field gets its own ordered probe list; adding support for
a new payload shape means adding a probe, not new control flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from nummercheck.shared.errors import InvalidPhoneNumber, MalformedPayloadError
from nummercheck.shared.phone import parse_phone_number
from nummercheck.shared.text import as_mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Probe:
    """A path into one of the payload roots.

    Attributes:
        root: Name of the root mapping (see ``_build_roots``).
        path: Keys to follow from that root.
    """

    root: str
    path: tuple[str, ...]

    def resolve(self, roots: dict[str, dict[str, Any]]) -> Any:
        """Follow the path, returning None on any missing step."""
        current: Any = roots.get(self.root)
        for key in self.path:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current


def probes(*specs: str) -> tuple[Probe, ...]:
    """Build probes from dotted ``root.key.key`` strings.

    Args:
        *specs: Dotted paths in priority order.

    Returns:
        Tuple of Probe objects.
    """
    built = []
    for spec in specs:
        root, *path = spec.split(".")
        built.append(Probe(root=root, path=tuple(path)))
    return tuple(built)


CONVERSATION_ID_PROBES = probes(
    "conversation.id",
    "conversation.conversation_id",
    "payload.conversation_id",
    "payload.conversationId",
    "data.conversation_id",
)

LOOKUP_ID_PROBES = probes(
    "metadata.lookupId",
    "metadata.lookup_id",
    "payload.lookupId",
    "payload.lookup_id",
    "dynamic_variables.lookupId",
    "dynamic_variables.lookup_id",
)

PHONE_NUMBER_PROBES = probes(
    "metadata.normalized",
    "dynamic_variables.normalized",
    "dynamic_variables.normalized_number",
    "dynamic_variables.target_number",
    "dynamic_variables.targetNumber",
    "dynamic_variables.rawInput",
    "data.normalized",
    "data.phone_number",
    "conversation.phone_number",
    "conversation.customer.number",
    "conversation.customer.phone_number",
    "payload.phone_number",
    "metadata.contact.number",
    "metadata.contact.phone_number",
    "metadata.contact.phoneNumber",
    "data.contact.number",
    "data.contact.phone_number",
    "data.contact.phoneNumber",
)

EVENT_PROBES = probes("payload.event", "payload.type")

STATUS_PROBES = probes("conversation.status", "payload.status", "data.status")

SUMMARY_PROBES = probes(
    "analysis.transcript_summary",
    "conversation.summary",
    "payload.summary",
    "metadata.summary",
)

CONFIDENCE_PROBES = probes(
    "conversation.confidence",
    "analysis.confidence",
    "payload.confidence",
    "metadata.confidence",
)

ENDED_AT_PROBES = probes(
    "conversation.completed_at",
    "conversation.ended_at",
    "payload.completed_at",
    "payload.ended_at",
)

EVENT_TIMESTAMP_PROBES = probes("payload.event_timestamp", "data.event_timestamp")

TRANSCRIPT_PROBES = probes("data.transcript", "conversation.transcript")


@dataclass(frozen=True)
class TranscriptMessage:
    """One utterance of the call transcript."""

    role: str | None
    message: str
    timestamp: float | None = None


@dataclass
class NormalizedPayload:
    """Canonical view of a webhook delivery.

    Attributes:
        conversation_id: Provider conversation id; always present.
        lookup_id: Lookup id echoed back through call metadata, if any.
        event: Webhook event name (``event`` or ``type``).
        status: Vendor conversation status.
        normalized_number: First candidate that parses as a phone number.
        transcript_messages: Structured transcript turns.
        transcript: Plain-text transcript.
        summary: First non-empty summary candidate.
        summary_candidates: All summary strings in priority order.
        confidence: Confidence between 0 and 1, if provided.
        ended_at: Call end time, if provided.
        event_timestamp: Delivery timestamp, if provided.
        roots: Payload sub-objects addressable by probes.
    """

    conversation_id: str
    lookup_id: str | None = None
    event: str | None = None
    status: str | None = None
    normalized_number: str | None = None
    transcript_messages: list[TranscriptMessage] = field(default_factory=list)
    transcript: str | None = None
    summary: str | None = None
    summary_candidates: list[str] = field(default_factory=list)
    confidence: float | None = None
    ended_at: datetime | None = None
    event_timestamp: datetime | None = None
    roots: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def payload(self) -> dict[str, Any]:
        return self.roots.get("payload", {})

    @property
    def conversation(self) -> dict[str, Any]:
        return self.roots.get("conversation", {})

    @property
    def metadata(self) -> dict[str, Any]:
        return self.roots.get("metadata", {})

    @property
    def analysis(self) -> dict[str, Any]:
        return self.roots.get("analysis", {})

    @property
    def dynamic_variables(self) -> dict[str, Any]:
        return self.roots.get("dynamic_variables", {})

    @property
    def has_completed_data(self) -> bool:
        """Whether the delivery carries a transcript or summary."""
        return bool(self.transcript or self.summary)


def _build_roots(payload: dict[str, Any]) -> dict[str, dict[str, Any]]:
    data = as_mapping(payload.get("data"))
    conversation = (
        as_mapping(payload.get("conversation"))
        or data
        or payload
    )
    metadata = as_mapping(conversation.get("metadata")) or as_mapping(payload.get("metadata"))
    initiation = as_mapping(
        conversation.get("conversation_initiation_client_data")
        or data.get("conversation_initiation_client_data")
    )
    analysis = as_mapping(conversation.get("analysis")) or as_mapping(data.get("analysis"))
    return {
        "payload": payload,
        "data": data,
        "conversation": conversation,
        "metadata": metadata,
        "initiation": initiation,
        "dynamic_variables": as_mapping(initiation.get("dynamic_variables")),
        "analysis": analysis,
    }


def first_value(
    roots: dict[str, dict[str, Any]],
    candidates: tuple[Probe, ...],
    accept: Any = None,
) -> Any:
    """Evaluate probes in order and return the first acceptable value.

    Args:
        roots: Payload roots.
        candidates: Probes in priority order.
        accept: Predicate on the resolved value; defaults to "not None".

    Returns:
        The first accepted value, or None.
    """
    for probe in candidates:
        value = probe.resolve(roots)
        if value is None:
            continue
        if accept is None or accept(value):
            return value
    return None


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def first_string(roots: dict[str, dict[str, Any]], candidates: tuple[Probe, ...]) -> str | None:
    """Return the first non-blank string reached by the probes."""
    value = first_value(roots, candidates, _is_text)
    return value.strip() if value is not None else None


def data_collection_value(results: Any, field_name: str) -> Any:
    """Read a structured-extraction field.

    Accepts both ``{"name": {"value": "Jan"}}`` and ``{"name": "Jan"}``.

    Args:
        results: A ``data_collection_results`` mapping.
        field_name: Field to read.

    Returns:
        The field's value, or None.
    """
    if not isinstance(results, dict) or field_name not in results:
        return None
    entry = results[field_name]
    if isinstance(entry, dict):
        return entry.get("value")
    return entry


def as_entity_list(raw: Any) -> list[dict[str, Any]]:
    """Coerce provider "entities" (array or keyed object) to a list of dicts."""
    if isinstance(raw, list):
        return [entry for entry in raw if isinstance(entry, dict)]
    if isinstance(raw, dict):
        return [entry for entry in raw.values() if isinstance(entry, dict)]
    return []


def to_transcript_messages(raw: Any) -> list[TranscriptMessage]:
    """Convert provider transcript turns into TranscriptMessage objects.

    Args:
        raw: List of turn dicts, a single dict, or anything else.

    Returns:
        Messages with non-empty text, in original order.
    """
    if isinstance(raw, dict):
        raw = list(raw.values())
    if not isinstance(raw, list):
        return []
    messages = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        text = next(
            (entry[key] for key in ("message", "text", "content") if isinstance(entry.get(key), str)),
            None,
        )
        if not text or not text.strip():
            continue
        role = next(
            (entry[key] for key in ("role", "speaker", "participant") if isinstance(entry.get(key), str)),
            None,
        )
        timestamp = next(
            (
                float(entry[key])
                for key in ("timestamp", "time_in_call_secs", "start", "offset", "time")
                if isinstance(entry.get(key), (int, float)) and not isinstance(entry.get(key), bool)
            ),
            None,
        )
        messages.append(TranscriptMessage(role=role, message=text.strip(), timestamp=timestamp))
    return messages


def _transcript_text(conversation: dict[str, Any], messages: list[TranscriptMessage]) -> str | None:
    if _is_text(conversation.get("transcript")):
        return conversation["transcript"].strip()
    conversation_messages = to_transcript_messages(conversation.get("messages"))
    if conversation_messages:
        return "\n".join(f"{m.role or 'unknown'}: {m.message}" for m in conversation_messages)
    if messages:
        return "\n".join(m.message for m in messages)
    return None


def normalize_confidence(value: Any) -> float | None:
    """Map a provider confidence onto 0..1.

    Args:
        value: Raw confidence; percentages up to 100 are accepted.

    Returns:
        Clamped confidence, or None when not numeric.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    confidence = float(value)
    if 1 < confidence <= 100:
        confidence /= 100
    return min(max(confidence, 0.0), 1.0)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or unix seconds into aware datetimes."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _first_timestamp(
    roots: dict[str, dict[str, Any]], candidates: tuple[Probe, ...]
) -> datetime | None:
    for probe in candidates:
        parsed = parse_timestamp(probe.resolve(roots))
        if parsed is not None:
            return parsed
    return None


def _resolve_number(roots: dict[str, dict[str, Any]]) -> str | None:
    for probe in PHONE_NUMBER_PROBES:
        candidate = probe.resolve(roots)
        if not isinstance(candidate, str):
            continue
        try:
            return parse_phone_number(candidate).normalized
        except InvalidPhoneNumber:
            continue
    return None


def normalize_payload(payload: Any) -> NormalizedPayload:
    """Build the canonical record for one webhook delivery.

    Args:
        payload: Parsed JSON body.

    Returns:
        NormalizedPayload with every field resolved independently.

    Raises:
        MalformedPayloadError: If the body is not an object or no
            conversation id can be found.
    """
    if not isinstance(payload, dict):
        raise MalformedPayloadError("webhook body must be a JSON object")

    roots = _build_roots(payload)

    conversation_id = first_string(roots, CONVERSATION_ID_PROBES)
    if conversation_id is None:
        raise MalformedPayloadError("Missing conversation id")

    transcript_messages = to_transcript_messages(first_value(roots, TRANSCRIPT_PROBES))
    summary_candidates = [
        value.strip()
        for value in (probe.resolve(roots) for probe in SUMMARY_PROBES)
        if _is_text(value)
    ]

    normalized = NormalizedPayload(
        conversation_id=conversation_id,
        lookup_id=first_string(roots, LOOKUP_ID_PROBES),
        event=first_string(roots, EVENT_PROBES),
        status=first_string(roots, STATUS_PROBES),
        normalized_number=_resolve_number(roots),
        transcript_messages=transcript_messages,
        transcript=_transcript_text(roots["conversation"], transcript_messages),
        summary=summary_candidates[0] if summary_candidates else None,
        summary_candidates=summary_candidates,
        confidence=normalize_confidence(
            first_value(roots, CONFIDENCE_PROBES, lambda v: normalize_confidence(v) is not None)
        ),
        ended_at=_first_timestamp(roots, ENDED_AT_PROBES),
        event_timestamp=_first_timestamp(roots, EVENT_TIMESTAMP_PROBES),
        roots=roots,
    )

    logger.info(
        "webhook_payload_normalized",
        extra={
            "conversation_id": conversation_id,
            "event": normalized.event,
            "status": normalized.status,
            "has_transcript": bool(normalized.transcript),
            "has_summary": bool(normalized.summary),
        },
    )
    return normalized
