"""Timestamped HMAC-SHA256 webhook signatures.

Header format: ``t=<unix-timestamp>,v0=<signature>``. The signed message
is ``"<timestamp>.<raw body>"``. The signature may be hex or base64 and
may carry a ``sha256=`` prefix; ``v1``/``v2`` are read when ``v0`` is
absent.
"""

import base64
import hashlib
import hmac
import logging
import time

from nummercheck.shared.errors import AuthenticationError

logger = logging.getLogger(__name__)

SIGNATURE_VERSION_KEYS = ("v0", "v1", "v2")


def parse_signature_header(header: str) -> dict[str, str]:
    """Split a signature header into its key/value parts.

    Args:
        header: Raw header value.

    Returns:
        Mapping of part key to value. Values keep any "=" padding.
    """
    parts: dict[str, str] = {}
    for chunk in header.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep and key:
            parts[key.strip()] = value.strip()
    return parts


def _digest(secret: str, timestamp: str, body: bytes) -> bytes:
    message = timestamp.encode("utf-8") + b"." + body
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=message,
        digestmod=hashlib.sha256,
    ).digest()


def sign_payload(secret: str, body: bytes, timestamp: int | None = None) -> str:
    """Build a signature header for a raw body.

    Args:
        secret: Shared webhook secret.
        body: Exact bytes that will be sent.
        timestamp: Unix timestamp; defaults to now.

    Returns:
        Header value in ``t=...,v0=<hex>`` form.
    """
    ts = str(timestamp if timestamp is not None else int(time.time()))
    return f"t={ts},v0={_digest(secret, ts, body).hex()}"


def _matches(provided: str, expected: bytes) -> bool:
    candidates = [provided]
    if provided.startswith("sha256="):
        candidates.append(provided[len("sha256="):])
    expected_hex = expected.hex()
    expected_b64 = base64.b64encode(expected).decode("ascii")
    for candidate in candidates:
        if hmac.compare_digest(candidate.lower().encode("utf-8"), expected_hex.encode("ascii")):
            return True
        if hmac.compare_digest(candidate.encode("utf-8"), expected_b64.encode("ascii")):
            return True
    return False


def verify_signature(
    body: bytes,
    header: str | None,
    secret: str | None,
    *,
    allow_unsigned: bool = False,
) -> None:
    """Authenticate a webhook body against its signature header.

    Args:
        body: Raw request bytes, before any JSON parsing.
        header: Signature header value, if present.
        secret: Shared secret. Empty means no secret is configured.
        allow_unsigned: Accept requests when no secret is configured.
            Only for local development; a warning is logged each time.

    Raises:
        AuthenticationError: If the header is missing, malformed, or
            the signature does not match.
    """
    if not secret:
        if allow_unsigned:
            logger.warning("webhook_signature_check_disabled")
            return
        raise AuthenticationError("webhook secret is not configured")

    if not header:
        raise AuthenticationError("missing signature header")

    parts = parse_signature_header(header)
    timestamp = parts.get("t")
    provided = next((parts[key] for key in SIGNATURE_VERSION_KEYS if parts.get(key)), None)
    if not timestamp or not provided:
        raise AuthenticationError("malformed signature header")

    if not _matches(provided, _digest(secret, timestamp, body)):
        raise AuthenticationError("signature mismatch")
