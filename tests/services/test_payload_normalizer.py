"""Tests for webhook payload normalization."""

from datetime import datetime, timezone

import pytest

from nummercheck.services.payload_normalizer import (
    data_collection_value,
    normalize_confidence,
    normalize_payload,
    parse_timestamp,
    to_transcript_messages,
)
from nummercheck.shared.errors import MalformedPayloadError


def _post_call_payload() -> dict:
    return {
        "type": "post_call_transcription",
        "event_timestamp": 1730000000,
        "data": {
            "conversation_id": "conv-123",
            "status": "done",
            "transcript": [
                {"role": "agent", "message": "Met wie spreek ik?"},
                {"role": "user", "message": "Mijn naam is Jan de Vries."},
            ],
            "conversation_initiation_client_data": {
                "dynamic_variables": {"lookupId": "lookup-1", "normalized": "0031612345678"},
            },
            "analysis": {"transcript_summary": "De beller is Jan de Vries."},
        },
    }


class TestNormalizePayload:
    """Field resolution across payload shapes."""

    def test_data_envelope(self) -> None:
        normalized = normalize_payload(_post_call_payload())
        assert normalized.conversation_id == "conv-123"
        assert normalized.lookup_id == "lookup-1"
        assert normalized.event == "post_call_transcription"
        assert normalized.status == "done"
        assert normalized.normalized_number == "+31612345678"
        assert normalized.summary == "De beller is Jan de Vries."
        assert [m.role for m in normalized.transcript_messages] == ["agent", "user"]
        assert normalized.has_completed_data
        assert normalized.event_timestamp == datetime.fromtimestamp(1730000000, tz=timezone.utc)

    def test_flat_transcript_text(self) -> None:
        """Plain messages joined when no string transcript is present."""
        normalized = normalize_payload(_post_call_payload())
        assert normalized.transcript == "Met wie spreek ik?\nMijn naam is Jan de Vries."

    def test_conversation_envelope(self) -> None:
        payload = {
            "event": "conversation_started",
            "conversation": {
                "id": "conv-9",
                "status": "in-progress",
                "metadata": {"lookup_id": "lookup-9", "confidence": 87},
                "transcript": "  hallo  ",
                "completed_at": "2025-11-01T10:00:00Z",
            },
        }
        normalized = normalize_payload(payload)
        assert normalized.conversation_id == "conv-9"
        assert normalized.lookup_id == "lookup-9"
        assert normalized.event == "conversation_started"
        assert normalized.status == "in-progress"
        assert normalized.transcript == "hallo"
        assert normalized.confidence == pytest.approx(0.87)
        assert normalized.ended_at == datetime(2025, 11, 1, 10, 0, tzinfo=timezone.utc)

    def test_top_level_conversation_id(self) -> None:
        normalized = normalize_payload({"conversation_id": "conv-flat", "status": "initiated"})
        assert normalized.conversation_id == "conv-flat"
        assert normalized.summary is None
        assert not normalized.has_completed_data

    def test_skips_invalid_phone_candidates(self) -> None:
        payload = {
            "conversation_id": "conv-1",
            "metadata": {"normalized": "unknown"},
            "phone_number": "+31 6 1234 5678",
        }
        assert normalize_payload(payload).normalized_number == "+31612345678"

    def test_missing_conversation_id_raises(self) -> None:
        with pytest.raises(MalformedPayloadError, match="Missing conversation id"):
            normalize_payload({"type": "post_call_transcription", "data": {}})

    def test_non_object_raises(self) -> None:
        with pytest.raises(MalformedPayloadError):
            normalize_payload(["conv-1"])


class TestHelpers:
    """Coercion helpers."""

    def test_confidence_percentage_scaled(self) -> None:
        assert normalize_confidence(75) == pytest.approx(0.75)

    def test_confidence_clamped(self) -> None:
        assert normalize_confidence(250) == 1.0
        assert normalize_confidence(-0.5) == 0.0

    def test_confidence_rejects_bool_and_text(self) -> None:
        assert normalize_confidence(True) is None
        assert normalize_confidence("0.9") is None

    def test_parse_timestamp_formats(self) -> None:
        assert parse_timestamp("2025-01-02T03:04:05") == datetime(
            2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc
        )
        assert parse_timestamp("not a date") is None
        assert parse_timestamp(None) is None

    def test_data_collection_value_shapes(self) -> None:
        assert data_collection_value({"name": {"value": "Jan"}}, "name") == "Jan"
        assert data_collection_value({"name": "Jan"}, "name") == "Jan"
        assert data_collection_value({}, "name") is None

    def test_transcript_messages_skip_empty(self) -> None:
        messages = to_transcript_messages(
            [{"speaker": "user", "text": "Hoi"}, {"role": "agent", "message": "  "}, "x"]
        )
        assert len(messages) == 1
        assert messages[0].role == "user"
        assert messages[0].message == "Hoi"
