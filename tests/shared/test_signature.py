"""Tests for webhook signature verification."""

import base64
import hashlib
import hmac

import pytest

from nummercheck.shared.errors import AuthenticationError
from nummercheck.shared.signature import (
    parse_signature_header,
    sign_payload,
    verify_signature,
)

SECRET = "whsec-test"
BODY = b'{"type":"post_call_transcription","data":{"conversation_id":"conv-1"}}'
TIMESTAMP = "1730000000"


def _raw_digest(secret: str = SECRET, body: bytes = BODY, ts: str = TIMESTAMP) -> bytes:
    return hmac.new(secret.encode(), ts.encode() + b"." + body, hashlib.sha256).digest()


class TestParseSignatureHeader:
    """Header splitting."""

    def test_splits_parts(self) -> None:
        assert parse_signature_header("t=1,v0=abc") == {"t": "1", "v0": "abc"}

    def test_keeps_base64_padding(self) -> None:
        """Only the first '=' separates key and value."""
        parts = parse_signature_header("t=1, v0=YWJjZA==")
        assert parts["v0"] == "YWJjZA=="

    def test_ignores_chunks_without_separator(self) -> None:
        assert parse_signature_header("garbage,t=5") == {"t": "5"}


class TestVerifySignature:
    """HMAC-SHA256 verification over timestamp and raw body."""

    def test_accepts_hex_signature(self) -> None:
        header = f"t={TIMESTAMP},v0={_raw_digest().hex()}"
        verify_signature(BODY, header, SECRET)

    def test_accepts_base64_signature(self) -> None:
        encoded = base64.b64encode(_raw_digest()).decode()
        verify_signature(BODY, f"t={TIMESTAMP},v0={encoded}", SECRET)

    def test_accepts_sha256_prefix(self) -> None:
        header = f"t={TIMESTAMP},v0=sha256={_raw_digest().hex()}"
        verify_signature(BODY, header, SECRET)

    def test_falls_back_to_v1(self) -> None:
        header = f"t={TIMESTAMP},v1={_raw_digest().hex()}"
        verify_signature(BODY, header, SECRET)

    def test_sign_payload_round_trips(self) -> None:
        """Headers produced for replay verify against the same body."""
        verify_signature(BODY, sign_payload(SECRET, BODY, 1730000000), SECRET)

    def test_rejects_mutated_body(self) -> None:
        header = sign_payload(SECRET, BODY, 1730000000)
        with pytest.raises(AuthenticationError):
            verify_signature(BODY + b" ", header, SECRET)

    def test_rejects_single_byte_signature_change(self) -> None:
        signature = _raw_digest().hex()
        flipped = ("0" if signature[0] != "0" else "1") + signature[1:]
        with pytest.raises(AuthenticationError):
            verify_signature(BODY, f"t={TIMESTAMP},v0={flipped}", SECRET)

    def test_accepts_uppercased_hex(self) -> None:
        header = f"t={TIMESTAMP},v0={_raw_digest().hex().upper()}"
        verify_signature(BODY, header, SECRET)

    def test_rejects_case_changed_base64(self) -> None:
        encoded = base64.b64encode(_raw_digest()).decode("ascii")
        swapped = encoded.swapcase()
        assert swapped != encoded
        with pytest.raises(AuthenticationError):
            verify_signature(BODY, f"t={TIMESTAMP},v0={swapped}", SECRET)

    def test_rejects_wrong_secret(self) -> None:
        header = sign_payload("other-secret", BODY, 1730000000)
        with pytest.raises(AuthenticationError):
            verify_signature(BODY, header, SECRET)

    def test_rejects_missing_header(self) -> None:
        with pytest.raises(AuthenticationError, match="missing"):
            verify_signature(BODY, None, SECRET)

    def test_rejects_header_without_timestamp(self) -> None:
        with pytest.raises(AuthenticationError, match="malformed"):
            verify_signature(BODY, f"v0={_raw_digest().hex()}", SECRET)

    def test_rejects_header_without_signature(self) -> None:
        with pytest.raises(AuthenticationError, match="malformed"):
            verify_signature(BODY, f"t={TIMESTAMP}", SECRET)

    def test_no_secret_rejects_by_default(self) -> None:
        with pytest.raises(AuthenticationError):
            verify_signature(BODY, None, "")

    def test_no_secret_allowed_when_unsigned_permitted(self, caplog) -> None:
        """Development mode skips the check but logs a warning."""
        verify_signature(BODY, None, "", allow_unsigned=True)
        assert "webhook_signature_check_disabled" in caplog.text
