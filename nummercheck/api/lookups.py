"""Lookup status endpoint polled by clients."""

from __future__ import annotations

import logging
from datetime import timezone
from email.utils import format_datetime

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from nummercheck.api.webhooks import get_status_cache
from nummercheck.config.settings import get_settings
from nummercheck.db.session import get_async_session
from nummercheck.services.status_aggregator import RetryPolicy, load_status_snapshot
from nummercheck.services.status_cache import StatusCache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lookups", tags=["lookups"])

NO_CACHE = "no-cache, no-store, must-revalidate"


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """Whether an If-None-Match header covers the current ETag.

    Args:
        if_none_match: Raw header value; may list several tags or ``*``.
        etag: Current quoted ETag.

    Returns:
        True when the client copy is current.
    """
    if not if_none_match:
        return False
    candidates = [part.strip() for part in if_none_match.split(",")]
    if "*" in candidates:
        return True
    return any(candidate.removeprefix("W/") == etag for candidate in candidates)


@router.get("/{lookup_id}/status")
async def get_lookup_status(
    lookup_id: str,
    request: Request,
    session: AsyncSession = Depends(get_async_session),
    cache: StatusCache = Depends(get_status_cache),
) -> Response:
    """Return the reconciled status of one lookup.

    Args:
        lookup_id: Lookup UUID.
        request: Incoming request, read for If-None-Match.
        session: Injected database session.
        cache: Injected status cache.

    Returns:
        304 when the client ETag is current, 404 for unknown lookups,
        otherwise the ``{"lookup", "callAttempt", "profile"}`` snapshot.
    """
    snapshot = await load_status_snapshot(
        session,
        lookup_id,
        policy=RetryPolicy.from_settings(get_settings()),
        cache=cache,
    )
    if snapshot is None:
        return JSONResponse({"error": "Lookup not found"}, status_code=404)

    headers = {"ETag": snapshot.etag, "Cache-Control": NO_CACHE}
    if snapshot.last_modified is not None:
        headers["Last-Modified"] = format_datetime(
            snapshot.last_modified.astimezone(timezone.utc), usegmt=True
        )

    if etag_matches(request.headers.get("if-none-match"), snapshot.etag):
        return Response(status_code=304, headers=headers)

    if not snapshot.converged:
        logger.info("status_served_unconverged", extra={"lookup_id": lookup_id})
    return JSONResponse(snapshot.body, headers=headers)
