"""Development-only routes for resetting data and replaying webhooks.

Both routes answer 403 when running in production.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from nummercheck.api.webhooks import get_status_cache, process_webhook
from nummercheck.config.settings import get_settings
from nummercheck.db.call_attempts import get_call_attempt_by_conversation_id
from nummercheck.db.lookups import get_lookup_by_id, reset_lookup_data
from nummercheck.db.session import get_async_session
from nummercheck.services.status_cache import StatusCache
from nummercheck.shared.signature import sign_payload
from nummercheck.shared.types import UNKNOWN_CALLER

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/dev", tags=["dev"])

DEV_SIGNING_SECRET = "dev-secret"
BODY_PREVIEW_CHARS = 3000

POST_CALL_EVENT = "post_call_transcription"
# Simulated lifecycle events: event name -> (webhook type, vendor status)
LIFECYCLE_EVENTS = {
    "scheduled": ("scheduled", "scheduled"),
    "initiating": ("conversation_initiated", "initiated"),
    "initiate": ("conversation_initiated", "initiated"),
    "in_progress": ("conversation_started", "in-progress"),
    "in-progress": ("conversation_started", "in-progress"),
    "completed": ("call_completed", "done"),
    POST_CALL_EVENT: (POST_CALL_EVENT, "done"),
    "post-call-transcription": (POST_CALL_EVENT, "done"),
}
# Events whose simulated delivery carries a transcript and analysis
DATA_EVENTS = ("completed", POST_CALL_EVENT, "post-call-transcription")


def _forbidden() -> JSONResponse:
    return JSONResponse({"error": "Not available in production"}, status_code=403)


def build_replay_payload(
    *,
    lookup_id: str,
    normalized: str,
    conversation_id: str,
    caller_name: str,
    status: str | None,
    agent_id: str,
    event: str = POST_CALL_EVENT,
) -> dict[str, Any]:
    """Build a lifecycle delivery shaped like the provider's.

    Args:
        lookup_id: Lookup echoed back through dynamic variables.
        normalized: Normalized number of the lookup.
        conversation_id: Conversation id to report.
        caller_name: Name the simulated callee gives.
        status: Vendor conversation status; the event's default when None.
        agent_id: Agent id to report.
        event: Lifecycle event to simulate. Unknown names are sent
            verbatim as both type and status.

    Returns:
        Webhook body as a dict.
    """
    key = event.strip().lower()
    event_type, default_status = LIFECYCLE_EVENTS.get(key, (key, key))
    data: dict[str, Any] = {
        "agent_id": agent_id,
        "conversation_id": conversation_id,
        "status": status or default_status,
        "conversation_initiation_client_data": {
            "dynamic_variables": {
                "lookupId": lookup_id,
                "source": "web_lookup",
                "normalized": normalized,
            },
        },
    }
    payload: dict[str, Any] = {
        "type": event_type,
        "event_timestamp": int(time.time()),
        "data": data,
    }
    if key not in DATA_EVENTS:
        return payload

    data["transcript"] = [
        {"role": "agent", "message": "Test: met wie spreek ik?"},
        {"role": "user", "message": caller_name},
    ]
    data["contact"] = {"caller_name": caller_name}
    data["analysis"] = {
        "data_collection_results": {
            "name": {"value": caller_name},
            "consent": {"value": "true"},
            "organisation": {"value": "false"},
        },
        "transcript_summary": f"Samenvatting: beller genoemd als {caller_name}.",
    }
    payload["metadata"] = {
        "normalized": normalized,
        "summary": f"Naam bevestigd: {caller_name}",
    }
    return payload


@router.post("/reset-db")
async def reset_db(
    session: AsyncSession = Depends(get_async_session),
    cache: StatusCache = Depends(get_status_cache),
) -> JSONResponse:
    """Delete all call attempts, lookups, and profiles.

    Args:
        session: Injected database session.
        cache: Injected status cache, cleared afterwards.

    Returns:
        Per-table deleted row counts.
    """
    if get_settings().is_production:
        return _forbidden()
    cleared = await reset_lookup_data(session)
    await session.commit()
    cache.clear()
    return JSONResponse({"success": True, "cleared": cleared})


@router.get("/replay-webhook")
async def replay_webhook_usage() -> JSONResponse:
    """Describe the replay route's query parameters."""
    if get_settings().is_production:
        return _forbidden()
    return JSONResponse(
        {
            "message": "Webhook replay endpoint",
            "usage": {
                "method": "POST",
                "queryParams": {
                    "lookupId": "Lookup to simulate the event for",
                    "conversationId": "Conversation to report; resolves the lookup when lookupId is absent",
                    "event": f"Lifecycle event to simulate (default: {POST_CALL_EVENT})",
                    "callerName": "Name the simulated callee gives",
                    "status": "Vendor status to report instead of the event's default",
                },
                "body": "A non-empty body is signed and replayed verbatim",
                "availableEvents": sorted(LIFECYCLE_EVENTS),
            },
        }
    )


@router.post("/replay-webhook")
async def replay_webhook(
    request: Request,
    lookup_id: str | None = Query(default=None, alias="lookupId"),
    conversation_id: str | None = Query(default=None, alias="conversationId"),
    caller_name: str = Query(default=UNKNOWN_CALLER, alias="callerName"),
    event: str = Query(default=POST_CALL_EVENT),
    status: str | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
    cache: StatusCache = Depends(get_status_cache),
) -> JSONResponse:
    """Sign and replay a webhook through the real processing pipeline.

    Posts the raw body as given, or builds a delivery for ``event`` when
    the body is empty. The lookup comes from ``lookupId``, else from the
    call attempt that owns ``conversationId``.

    Args:
        request: Incoming request; its body is replayed verbatim if present.
        lookup_id: Lookup to simulate the event for.
        conversation_id: Conversation id to report; generated if absent.
        caller_name: Name the simulated callee gives.
        event: Lifecycle event to simulate.
        status: Vendor conversation status to report.
        session: Injected database session.
        cache: Injected status cache.

    Returns:
        The pipeline's status and body, plus the signature used.
    """
    settings = get_settings()
    if settings.is_production:
        return _forbidden()

    raw_body = await request.body()
    used_provided_body = bool(raw_body.strip())
    if not used_provided_body:
        if lookup_id:
            lookup = await get_lookup_by_id(session, lookup_id)
        elif conversation_id:
            attempt = await get_call_attempt_by_conversation_id(session, conversation_id)
            lookup = await get_lookup_by_id(session, attempt.lookup_id) if attempt else None
        else:
            return JSONResponse(
                {"error": "Missing lookupId or conversationId"}, status_code=400
            )
        if lookup is None:
            return JSONResponse({"error": "Lookup not found"}, status_code=404)
        payload = build_replay_payload(
            lookup_id=str(lookup.id),
            normalized=lookup.normalized,
            conversation_id=conversation_id or f"conv_mock_{int(time.time() * 1000)}",
            caller_name=caller_name,
            status=status,
            agent_id=settings.elevenlabs_agent_id or "agent_dev",
            event=event,
        )
        raw_body = json.dumps(payload).encode("utf-8")

    secret = settings.elevenlabs_webhook_secret or DEV_SIGNING_SECRET
    signature = sign_payload(secret, raw_body)
    response = await process_webhook(
        raw_body,
        signature,
        session=session,
        cache=cache,
        settings=settings.model_copy(update={"elevenlabs_webhook_secret": secret}),
    )
    logger.info(
        "dev_webhook_replayed",
        extra={
            "status_code": response.status_code,
            "used_provided_body": used_provided_body,
            "event": None if used_provided_body else event,
        },
    )
    return JSONResponse(
        {
            "success": response.status_code < 400,
            "status": response.status_code,
            "usedProvidedBody": used_provided_body,
            "signature": signature,
            "bodyPreview": raw_body.decode("utf-8", errors="replace")[:BODY_PREVIEW_CHARS],
            "response": json.loads(response.body),
        }
    )
