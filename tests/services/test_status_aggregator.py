"""Tests for the retrying lookup status aggregator."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from nummercheck.client.progress import derive_progress, is_terminal_snapshot

from nummercheck.db.call_attempts import record_call_attempt
from nummercheck.db.lookups import create_lookup
from nummercheck.db.models import CallAttempt, PhoneLookup, PhoneProfile
from nummercheck.services.payload_normalizer import normalize_payload
from nummercheck.services.reconciliation import apply_webhook
from nummercheck.services.status_aggregator import (
    RetryPolicy,
    compose_snapshot,
    load_status_snapshot,
    stale_reasons,
)
from nummercheck.services.status_cache import StatusCache
from nummercheck.shared.types import LookupStatus

NUMBER = "+31201234567"
FAST = RetryPolicy(initial_delay=0, interval=0.01, max_retries=3)


async def _seed(session, *, lookup_status=LookupStatus.CALLING, attempt_status="scheduled"):
    lookup = await create_lookup(
        session, normalized=NUMBER, raw_input="020 1234567", status=lookup_status
    )
    attempt = await record_call_attempt(
        session, lookup_id=lookup.id, status=attempt_status, conversation_id="conv-a"
    )
    await session.commit()
    return lookup, attempt


class TestStaleReasons:
    """Staleness predicates."""

    def test_cached_lookup_with_initiating_attempt(self) -> None:
        lookup = PhoneLookup(status="cached")
        attempt = CallAttempt(status="initiating")
        assert stale_reasons("cached", lookup, attempt) == ["stale_completion"]

    def test_post_call_without_data(self) -> None:
        lookup = PhoneLookup(status="calling")
        attempt = CallAttempt(status="post_call_analysis_started")
        assert stale_reasons("calling", lookup, attempt) == ["post_call_without_data"]

    def test_status_changed_between_reads(self) -> None:
        lookup = PhoneLookup(status="cached")
        attempt = CallAttempt(status="post_call_transcription", summary="Klaar")
        assert stale_reasons("calling", lookup, attempt) == ["lookup_status_changed"]

    def test_consistent(self) -> None:
        lookup = PhoneLookup(status="calling")
        assert stale_reasons("calling", lookup, CallAttempt(status="ringing")) == []
        assert stale_reasons(None, lookup, None) == []


class TestLoadStatusSnapshot:
    """Snapshot composition and retry loop."""

    async def test_missing_lookup(self, db_session) -> None:
        assert await load_status_snapshot(db_session, str(uuid.uuid4()), policy=FAST) is None
        assert await load_status_snapshot(db_session, "not-a-uuid", policy=FAST) is None

    async def test_body_shape(self, db_session) -> None:
        lookup, attempt = await _seed(db_session)
        snapshot = await load_status_snapshot(db_session, str(lookup.id), policy=FAST)
        assert snapshot.body["lookup"]["id"] == str(lookup.id)
        assert snapshot.body["lookup"]["status"] == "calling"
        assert snapshot.body["callAttempt"]["id"] == str(attempt.id)
        assert snapshot.body["profile"] is None
        assert snapshot.converged
        assert not snapshot.terminal

    async def test_profile_merged_after_completion(self, db_session) -> None:
        lookup, _ = await _seed(db_session)
        payload = {
            "type": "post_call_transcription",
            "event_timestamp": 1730000000,
            "data": {
                "conversation_id": "conv-a",
                "status": "done",
                "transcript": [{"role": "user", "message": "Met Sanne Visser"}],
                "analysis": {"transcript_summary": "Sanne Visser nam op."},
            },
        }
        await apply_webhook(db_session, normalize_payload(payload))

        snapshot = await load_status_snapshot(db_session, lookup.id, policy=FAST)
        assert snapshot.terminal
        assert snapshot.body["lookup"]["status"] == "cached"
        assert snapshot.body["profile"]["callerName"] == "Sanne Visser"
        assert snapshot.body["profile"]["entityTag"] == "Particulier"
        assert snapshot.body["callAttempt"]["summary"] == "Sanne Visser nam op."

    async def test_etag_stable_until_change(self, db_session) -> None:
        lookup, _ = await _seed(db_session)
        first = await load_status_snapshot(db_session, lookup.id, policy=FAST)
        second = await load_status_snapshot(db_session, lookup.id, policy=FAST)
        assert first.etag == second.etag

        await apply_webhook(
            db_session,
            normalize_payload({"conversation_id": "conv-a", "status": "ringing"}),
        )
        third = await load_status_snapshot(db_session, lookup.id, policy=FAST)
        assert third.etag != first.etag
        assert third.last_modified >= first.last_modified

    async def test_retries_until_consistent(self, db_session) -> None:
        lookup, attempt = await _seed(
            db_session, lookup_status=LookupStatus.CACHED, attempt_status="initiating"
        )

        async def _sleep(_seconds: float) -> None:
            attempt.status = "post_call_transcription"
            attempt.transcript = "user: hallo"
            await db_session.flush()

        sleep = AsyncMock(side_effect=_sleep)
        snapshot = await load_status_snapshot(db_session, lookup.id, policy=FAST, sleep=sleep)
        assert snapshot.converged
        assert snapshot.body["callAttempt"]["status"] == "post_call_transcription"
        sleep.assert_awaited_once_with(FAST.interval)

    async def test_gives_up_after_retry_budget(self, db_session, caplog) -> None:
        lookup, _ = await _seed(
            db_session, lookup_status=LookupStatus.CACHED, attempt_status="initiating"
        )
        sleep = AsyncMock()
        snapshot = await load_status_snapshot(db_session, lookup.id, policy=FAST, sleep=sleep)
        assert not snapshot.converged
        assert snapshot.body["lookup"]["status"] == "cached"
        assert sleep.await_count == FAST.max_retries
        assert "stale_read_timeout" in caplog.text

    async def test_hard_wait_cap(self, db_session) -> None:
        """The total wait ceiling ends retries even with budget left."""
        lookup, _ = await _seed(
            db_session, lookup_status=LookupStatus.CACHED, attempt_status="initiating"
        )
        policy = RetryPolicy(initial_delay=0, interval=4.0, max_retries=10, max_total_wait=10.0)
        now = [0.0]

        async def _sleep(seconds: float) -> None:
            now[0] += seconds

        sleep = AsyncMock(side_effect=_sleep)
        snapshot = await load_status_snapshot(
            db_session, lookup.id, policy=policy, sleep=sleep, clock=lambda: now[0]
        )
        assert not snapshot.converged
        assert sleep.await_count == 2

    async def test_initial_delay_applied(self, db_session) -> None:
        lookup, _ = await _seed(db_session)
        sleep = AsyncMock()
        policy = RetryPolicy(initial_delay=0.05, interval=0.01, max_retries=1)
        await load_status_snapshot(db_session, lookup.id, policy=policy, sleep=sleep)
        sleep.assert_awaited_once_with(0.05)

    async def test_served_from_cache(self, db_session) -> None:
        lookup, _ = await _seed(db_session)
        cache = StatusCache()
        first = await load_status_snapshot(db_session, str(lookup.id), policy=FAST, cache=cache)

        await apply_webhook(
            db_session,
            normalize_payload({"conversation_id": "conv-a", "status": "ringing"}),
        )
        cached = await load_status_snapshot(db_session, str(lookup.id), policy=FAST, cache=cache)
        assert cached.etag == first.etag

        cache.invalidate(lookup.id)
        fresh = await load_status_snapshot(db_session, str(lookup.id), policy=FAST, cache=cache)
        assert fresh.etag != first.etag


class TestRetryPolicy:
    """Policy built from settings."""

    def test_total_wait_capped(self, settings) -> None:
        settings.status_max_wait_seconds = 60.0
        policy = RetryPolicy.from_settings(settings)
        assert policy.max_total_wait == 10.0
        assert policy.max_retries == settings.status_max_retries


class TestProfileFallback:
    """Profile fields standing in for empty attempt columns."""

    @staticmethod
    def _old_profile() -> PhoneProfile:
        return PhoneProfile(
            normalized=NUMBER,
            caller_name="Henk Bakker",
            summary="Oude samenvatting",
            transcript_preview="user: Met Henk",
            confidence=0.7,
            updated_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        )

    async def test_earlier_profile_does_not_finish_new_attempt(self, db_session) -> None:
        db_session.add(self._old_profile())
        await db_session.flush()
        lookup, _ = await _seed(db_session)

        snapshot = await load_status_snapshot(db_session, lookup.id, policy=FAST)
        attempt = snapshot.body["callAttempt"]
        assert attempt["summary"] is None
        assert attempt["transcript"] is None
        assert attempt["confidence"] is None
        assert snapshot.body["profile"]["summary"] == "Oude samenvatting"
        assert not is_terminal_snapshot(snapshot.body)
        assert derive_progress(attempt, snapshot.body["lookup"]["status"]).active_index == 0

    def test_cached_lookup_uses_profile(self) -> None:
        lookup = PhoneLookup(
            id=uuid.uuid4(), normalized=NUMBER, raw_input=NUMBER, status="cached"
        )
        attempt = CallAttempt(
            id=uuid.uuid4(),
            lookup_id=lookup.id,
            status="post_call_transcription",
            requested_at=datetime(2025, 6, 1, tzinfo=timezone.utc),
        )
        profile = self._old_profile()
        profile.id = uuid.uuid4()

        body = compose_snapshot(lookup, attempt, profile).body
        assert body["callAttempt"]["summary"] == "Oude samenvatting"
        assert body["callAttempt"]["confidence"] == 0.7
