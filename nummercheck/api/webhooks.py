"""ElevenLabs webhook endpoint.

Every delivery goes through the same pipeline: verify the signature over
the raw bytes, parse, normalize, then reconcile into lookups, call
attempts, and profiles. Storage failures are acknowledged with 200 so
the provider does not retry into the same failure.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from nummercheck.config.settings import Settings, get_settings
from nummercheck.db.session import get_async_session
from nummercheck.services.payload_normalizer import normalize_payload
from nummercheck.services.reconciliation import apply_webhook
from nummercheck.services.status_cache import StatusCache
from nummercheck.shared.errors import (
    AuthenticationError,
    MalformedPayloadError,
    UpstreamWriteFailure,
)
from nummercheck.shared.signature import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADERS = ("elevenlabs-signature", "x-signature")


def build_status_cache(settings: Settings) -> StatusCache:
    """Create the status cache with the configured TTLs."""
    return StatusCache(
        active_ttl=settings.status_cache_active_ttl_seconds,
        terminal_ttl=settings.status_cache_terminal_ttl_seconds,
    )


def get_status_cache(request: Request) -> StatusCache:
    """Return the app-wide status cache, creating it on first use.

    Args:
        request: Incoming request.

    Returns:
        StatusCache stored on ``app.state``.
    """
    cache = getattr(request.app.state, "status_cache", None)
    if cache is None:
        cache = build_status_cache(get_settings())
        request.app.state.status_cache = cache
    return cache


def signature_from_headers(request: Request) -> str | None:
    """First signature header present on the request."""
    for name in SIGNATURE_HEADERS:
        value = request.headers.get(name)
        if value:
            return value
    return None


async def process_webhook(
    body: bytes,
    signature: str | None,
    *,
    session: AsyncSession,
    cache: StatusCache,
    settings: Settings,
) -> JSONResponse:
    """Run one raw delivery through verification and reconciliation.

    Args:
        body: Raw request bytes.
        signature: Signature header value, if any.
        session: Active database session.
        cache: Status cache to invalidate.
        settings: Application settings.

    Returns:
        JSONResponse with the status code for the provider.
    """
    try:
        verify_signature(
            body,
            signature,
            settings.elevenlabs_webhook_secret,
            allow_unsigned=not settings.is_production,
        )
    except AuthenticationError as exc:
        logger.warning("webhook_unauthorized", extra={"reason": str(exc)})
        return JSONResponse({"error": "Unauthorized"}, status_code=401)

    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("webhook_invalid_json", extra={"body_size": len(body)})
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)

    try:
        normalized = normalize_payload(payload)
    except MalformedPayloadError as exc:
        logger.warning("webhook_malformed_payload", extra={"reason": str(exc)})
        return JSONResponse({"error": str(exc)}, status_code=400)

    try:
        outcome = await apply_webhook(session, normalized, cache=cache)
    except UpstreamWriteFailure:
        return JSONResponse({"success": True, "note": "write_failed"}, status_code=200)
    except Exception as exc:
        logger.exception(
            "webhook_processing_failed",
            extra={"conversation_id": normalized.conversation_id},
        )
        body_out: dict[str, Any] = {"error": "Internal server error"}
        if not settings.is_production:
            body_out["message"] = str(exc)
        return JSONResponse(body_out, status_code=500)

    return JSONResponse(outcome.to_response(), status_code=200)


@router.post("/elevenlabs")
async def handle_elevenlabs_webhook(
    request: Request,
    session: AsyncSession = Depends(get_async_session),
    cache: StatusCache = Depends(get_status_cache),
) -> JSONResponse:
    """Receive an ElevenLabs call lifecycle webhook.

    Args:
        request: Raw request; the body is read as bytes for signing.
        session: Injected database session.
        cache: Injected status cache.

    Returns:
        401 bad signature, 400 unparseable or missing conversation id,
        500 unexpected error, otherwise 200.
    """
    body = await request.body()
    return await process_webhook(
        body,
        signature_from_headers(request),
        session=session,
        cache=cache,
        settings=get_settings(),
    )


@router.get("/elevenlabs")
async def acknowledge_elevenlabs_webhook(
    conversation_id: str | None = Query(default=None),
    conversation_id_camel: str | None = Query(default=None, alias="conversationId"),
) -> dict[str, Any]:
    """Acknowledge the provider's initiation-data probe.

    Lifecycle changes arrive via POST; nothing is returned beyond the ack.

    Args:
        conversation_id: Echoed back when supplied.
        conversation_id_camel: Same, camelCase spelling.

    Returns:
        Dict with ok flag.
    """
    return {"ok": True, "conversation_id": conversation_id or conversation_id_camel}
