"""In-process TTL cache for lookup status snapshots.

Entries are immutable and replaced whole, so concurrent readers never
observe a half-written entry. The cache is per process: with several
instances behind a load balancer each keeps its own copy and webhook
invalidations only reach the instance that handled them.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def compute_etag(freshest: datetime | None, *parts: Any) -> str:
    """Build a quoted ETag from the freshest ``updated_at`` seen.

    Args:
        freshest: Latest update timestamp across the snapshot's rows.
        *parts: Extra discriminators (e.g. row ids, status) so that
            two snapshots sharing a timestamp still differ.

    Returns:
        Strong ETag such as ``"3f2a..."``.
    """
    if freshest is not None and freshest.tzinfo is None:
        freshest = freshest.replace(tzinfo=timezone.utc)
    material = "|".join(
        [freshest.isoformat() if freshest else "none", *(str(p) for p in parts)]
    )
    return '"' + hashlib.sha256(material.encode("utf-8")).hexdigest()[:32] + '"'


@dataclass(frozen=True)
class CacheEntry:
    """Cached snapshot plus its validator and expiry."""

    snapshot: dict[str, Any]
    etag: str
    last_modified: datetime | None
    terminal: bool
    expires_at: float


class StatusCache:
    """TTL cache keyed by lookup id.

    Args:
        active_ttl: Seconds to keep snapshots of lookups still in progress.
        terminal_ttl: Seconds to keep snapshots of finished lookups.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        *,
        active_ttl: float = 5.0,
        terminal_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._active_ttl = active_ttl
        self._terminal_ttl = terminal_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @staticmethod
    def key(lookup_id: Any) -> str:
        return f"lookup:{lookup_id}"

    def get(self, lookup_id: Any) -> CacheEntry | None:
        """Return a live entry, dropping it if expired."""
        key = self.key(lookup_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry

    def set(
        self,
        lookup_id: Any,
        snapshot: dict[str, Any],
        *,
        etag: str,
        last_modified: datetime | None = None,
        terminal: bool = False,
    ) -> CacheEntry:
        """Store a snapshot, replacing any previous entry.

        Args:
            lookup_id: Lookup the snapshot belongs to.
            snapshot: Response body.
            etag: Validator computed for the snapshot.
            last_modified: Freshest update timestamp.
            terminal: Whether the lookup reached cached/failed.

        Returns:
            The stored entry.
        """
        ttl = self._terminal_ttl if terminal else self._active_ttl
        entry = CacheEntry(
            snapshot=snapshot,
            etag=etag,
            last_modified=last_modified,
            terminal=terminal,
            expires_at=self._clock() + ttl,
        )
        self._entries[self.key(lookup_id)] = entry
        return entry

    def invalidate(self, lookup_id: Any) -> None:
        """Forget the snapshot of one lookup."""
        if self._entries.pop(self.key(lookup_id), None) is not None:
            logger.debug("status_cache_invalidated", extra={"lookup_id": str(lookup_id)})

    def clear(self) -> None:
        """Forget every snapshot."""
        self._entries.clear()

    def cleanup_expired(self) -> int:
        """Drop expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in list(self._entries.items()) if entry.expires_at <= now]
        for key in expired:
            self._entries.pop(key, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
