"""Tests for the ElevenLabs webhook endpoint."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from nummercheck.db.call_attempts import get_latest_call_attempt, record_call_attempt
from nummercheck.db.lookups import create_lookup, get_lookup_by_id
from nummercheck.db.profiles import fetch_profile_by_number
from nummercheck.shared.errors import UpstreamWriteFailure
from nummercheck.shared.signature import sign_payload

NUMBER = "+31612345678"


@pytest.fixture
async def seeded(session_factory):
    """Lookup with a scheduled call attempt for conv-1."""
    async with session_factory() as session:
        lookup = await create_lookup(session, normalized=NUMBER, raw_input="0612345678")
        await record_call_attempt(
            session, lookup_id=lookup.id, status="scheduled", conversation_id="conv-1"
        )
        await session.commit()
        return lookup.id


def _post_call_body(lookup_id) -> bytes:
    payload = {
        "type": "post_call_transcription",
        "event_timestamp": 1730000000,
        "data": {
            "conversation_id": "conv-1",
            "status": "done",
            "transcript": [
                {"role": "agent", "message": "Met wie spreek ik?"},
                {"role": "user", "message": "Mijn naam is Jan de Vries"},
            ],
            "conversation_initiation_client_data": {
                "dynamic_variables": {"lookupId": str(lookup_id), "normalized": NUMBER},
            },
        },
    }
    return json.dumps(payload).encode()


async def _post(app, body: bytes, headers: dict | None = None):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post(
            "/webhooks/elevenlabs",
            content=body,
            headers={"Content-Type": "application/json", **(headers or {})},
        )


def _signed(body: bytes, secret: str = "test-webhook-secret") -> dict:
    return {"ElevenLabs-Signature": sign_payload(secret, body)}


class TestSignature:
    """Authentication of deliveries."""

    async def test_bad_signature_returns_401(self, app) -> None:
        body = b'{"conversation_id": "conv-1"}'
        response = await _post(app, body, {"ElevenLabs-Signature": "t=1,v0=deadbeef"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    async def test_missing_signature_returns_401(self, app) -> None:
        response = await _post(app, b'{"conversation_id": "conv-1"}')
        assert response.status_code == 401

    async def test_x_signature_header_accepted(self, app) -> None:
        body = b'{"conversation_id": "conv-unknown"}'
        headers = {"X-Signature": sign_payload("test-webhook-secret", body)}
        response = await _post(app, body, headers)
        assert response.status_code == 200

    async def test_unsigned_allowed_without_secret_in_development(self, app, settings) -> None:
        settings.elevenlabs_webhook_secret = ""
        response = await _post(app, b'{"conversation_id": "conv-unknown"}')
        assert response.status_code == 200

    async def test_unsigned_rejected_without_secret_in_production(self, app, settings) -> None:
        settings.elevenlabs_webhook_secret = ""
        settings.environment = "production"
        response = await _post(app, b'{"conversation_id": "conv-unknown"}')
        assert response.status_code == 401


class TestPayloadErrors:
    """Unparseable deliveries."""

    async def test_invalid_json_returns_400(self, app) -> None:
        body = b"{not json"
        response = await _post(app, body, _signed(body))
        assert response.status_code == 400

    async def test_missing_conversation_id_returns_400(self, app) -> None:
        body = b'{"type": "post_call_transcription", "data": {}}'
        response = await _post(app, body, _signed(body))
        assert response.status_code == 400
        assert response.json() == {"error": "Missing conversation id"}


class TestProcessing:
    """Successful and failing reconciliation."""

    async def test_post_call_caches_lookup(self, app, seeded, session_factory) -> None:
        body = _post_call_body(seeded)
        response = await _post(app, body, _signed(body))
        assert response.status_code == 200
        assert response.json() == {"success": True}

        async with session_factory() as session:
            lookup = await get_lookup_by_id(session, seeded)
            attempt = await get_latest_call_attempt(session, seeded)
            profile = await fetch_profile_by_number(session, NUMBER)
        assert lookup.status == "cached"
        assert attempt.status == "post_call_transcription"
        assert profile.caller_name == "Jan de Vries"
        assert profile.entity_tag == "Particulier"

    async def test_unknown_lookup_acknowledged_with_note(self, app) -> None:
        body = b'{"conversation_id": "conv-orphan", "status": "done"}'
        response = await _post(app, body, _signed(body))
        assert response.status_code == 200
        assert response.json() == {"success": True, "note": "Lookup id missing"}

    async def test_write_failure_acknowledged(self, app) -> None:
        body = b'{"conversation_id": "conv-1", "status": "done"}'
        with patch(
            "nummercheck.api.webhooks.apply_webhook",
            new_callable=AsyncMock,
            side_effect=UpstreamWriteFailure("db down"),
        ):
            response = await _post(app, body, _signed(body))
        assert response.status_code == 200
        assert response.json() == {"success": True, "note": "write_failed"}

    async def test_unexpected_error_returns_500_with_message(self, app) -> None:
        body = b'{"conversation_id": "conv-1"}'
        with patch(
            "nummercheck.api.webhooks.apply_webhook",
            new_callable=AsyncMock,
            side_effect=RuntimeError("boom"),
        ):
            response = await _post(app, body, _signed(body))
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "message": "boom"}

    async def test_unexpected_error_hides_message_in_production(self, app, settings) -> None:
        settings.environment = "production"
        body = b'{"conversation_id": "conv-1"}'
        with patch(
            "nummercheck.api.webhooks.apply_webhook",
            new_callable=AsyncMock,
            side_effect=RuntimeError("boom"),
        ):
            response = await _post(app, body, _signed(body))
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestAcknowledge:
    """GET probe from the provider."""

    async def test_get_acknowledges(self, app) -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/webhooks/elevenlabs", params={"conversationId": "c-1"})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "conversation_id": "c-1"}
