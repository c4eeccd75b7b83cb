"""Tests for the in-process status snapshot cache."""

from datetime import datetime, timezone

from nummercheck.services.status_cache import StatusCache, compute_etag


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestComputeEtag:
    """Validator derivation."""

    def test_quoted_and_stable(self) -> None:
        ts = datetime(2025, 11, 1, 12, 0, tzinfo=timezone.utc)
        etag = compute_etag(ts, "cached", "a1")
        assert etag.startswith('"') and etag.endswith('"')
        assert etag == compute_etag(ts, "cached", "a1")

    def test_naive_timestamp_treated_as_utc(self) -> None:
        aware = datetime(2025, 11, 1, 12, 0, tzinfo=timezone.utc)
        assert compute_etag(aware.replace(tzinfo=None), "x") == compute_etag(aware, "x")

    def test_changes_with_parts(self) -> None:
        ts = datetime(2025, 11, 1, tzinfo=timezone.utc)
        assert compute_etag(ts, "calling") != compute_etag(ts, "cached")


class TestStatusCache:
    """TTL behavior."""

    def test_active_entries_expire_sooner(self) -> None:
        clock = FakeClock()
        cache = StatusCache(active_ttl=5, terminal_ttl=60, clock=clock)
        cache.set("a", {"n": 1}, etag='"1"')
        cache.set("b", {"n": 2}, etag='"2"', terminal=True)

        clock.now += 10
        assert cache.get("a") is None
        assert cache.get("b").snapshot == {"n": 2}

    def test_invalidate(self) -> None:
        cache = StatusCache(clock=FakeClock())
        cache.set("a", {}, etag='"1"')
        cache.invalidate("a")
        assert cache.get("a") is None
        cache.invalidate("missing")

    def test_set_replaces_entry(self) -> None:
        cache = StatusCache(clock=FakeClock())
        cache.set("a", {"v": 1}, etag='"1"')
        cache.set("a", {"v": 2}, etag='"2"')
        assert cache.get("a").etag == '"2"'
        assert len(cache) == 1

    def test_cleanup_expired(self) -> None:
        clock = FakeClock()
        cache = StatusCache(active_ttl=1, terminal_ttl=100, clock=clock)
        cache.set("a", {}, etag='"1"')
        cache.set("b", {}, etag='"2"', terminal=True)
        clock.now += 2
        assert cache.cleanup_expired() == 1
        assert len(cache) == 1

    def test_clear(self) -> None:
        cache = StatusCache(clock=FakeClock())
        cache.set("a", {}, etag='"1"')
        cache.clear()
        assert len(cache) == 0
