"""Reconciliation poller for lookup status snapshots.

Polls ``GET /lookups/{id}/status`` with ``If-None-Match`` until the
lookup is terminal, and hands each changed snapshot to a callback. A
call to ``trigger_now`` (e.g. on a push notification for the lookup)
short-circuits the current wait.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from nummercheck.client.progress import is_terminal_snapshot

logger = logging.getLogger(__name__)

MIN_POLL_INTERVAL_SECONDS = 2.0
MAX_POLL_INTERVAL_SECONDS = 5.0

UpdateCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


def content_hash(snapshot: dict[str, Any]) -> str:
    """Stable hash of a snapshot, independent of key order."""
    encoded = json.dumps(snapshot, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class StatusPoller:
    """Cancellable poll loop for one lookup.

    Args:
        client: HTTP client pointed at the API base URL.
        lookup_id: Lookup to follow.
        interval: Seconds between polls, clamped to 2..5.
        on_update: Called with each snapshot whose content changed.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        lookup_id: str,
        *,
        interval: float = 3.0,
        on_update: UpdateCallback | None = None,
    ) -> None:
        self._client = client
        self._lookup_id = lookup_id
        self.interval = min(max(interval, MIN_POLL_INTERVAL_SECONDS), MAX_POLL_INTERVAL_SECONDS)
        self._on_update = on_update
        self._trigger = asyncio.Event()
        self._cancelled = False
        self._etag: str | None = None
        self._hash: str | None = None
        self.snapshot: dict[str, Any] | None = None
        self.finished = False
        self.polls = 0

    @property
    def url(self) -> str:
        return f"/lookups/{self._lookup_id}/status"

    def trigger_now(self) -> None:
        """Skip the remaining wait and poll immediately."""
        self._trigger.set()

    def cancel(self) -> None:
        """Stop the loop after the in-flight request."""
        self._cancelled = True
        self._trigger.set()

    async def poll_once(self) -> bool:
        """Fetch the status once and apply it if it changed.

        Returns:
            True when polling should stop (terminal or lookup gone).
        """
        headers = {"If-None-Match": self._etag} if self._etag else {}
        self.polls += 1
        try:
            response = await self._client.get(self.url, headers=headers)
        except httpx.HTTPError:
            logger.warning("status_poll_failed", extra={"lookup_id": self._lookup_id})
            return False

        if response.status_code == 304:
            return False
        if response.status_code == 404:
            logger.info("status_poll_lookup_missing", extra={"lookup_id": self._lookup_id})
            return True
        if response.status_code != 200:
            logger.warning(
                "status_poll_unexpected_status",
                extra={"lookup_id": self._lookup_id, "status_code": response.status_code},
            )
            return False

        snapshot = response.json()
        self._etag = response.headers.get("etag") or self._etag
        digest = content_hash(snapshot)
        if digest != self._hash:
            self._hash = digest
            self.snapshot = snapshot
            if self._on_update is not None:
                result = self._on_update(snapshot)
                if asyncio.iscoroutine(result):
                    await result
        return is_terminal_snapshot(snapshot)

    async def _wait(self) -> None:
        try:
            await asyncio.wait_for(self._trigger.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass
        self._trigger.clear()

    async def run(self) -> dict[str, Any] | None:
        """Poll until terminal, lookup missing, or cancelled.

        Returns:
            The last snapshot applied, if any.
        """
        while not self._cancelled:
            if await self.poll_once():
                self.finished = True
                break
            if self._cancelled:
                break
            await self._wait()
        logger.debug(
            "status_poll_stopped",
            extra={"lookup_id": self._lookup_id, "polls": self.polls, "finished": self.finished},
        )
        return self.snapshot
