"""Tests for the daily sync scheduler."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from eight_sleep.domain.models import Integration, SyncResult
from eight_sleep.scheduler import (
    JOB_ID,
    SyncTracker,
    build_scheduler,
    hour_key,
    run_sync_check,
    should_sync,
)

# 08:02 in Los Angeles (PDT, UTC-7)
AT_SYNC_TIME = datetime(2024, 3, 15, 15, 2, tzinfo=UTC)


def candidate(sync_time=time(8, 0), timezone="America/Los_Angeles") -> Integration:
    return Integration(
        id=uuid4(),
        user_id=uuid4(),
        email_encrypted="x",
        password_encrypted="y",
        sync_time=sync_time,
        sync_timezone=timezone,
    )


class TestShouldSync:
    def test_inside_window(self):
        assert should_sync(time(8, 0), "America/Los_Angeles", AT_SYNC_TIME, 5) is True

    def test_window_end_is_exclusive(self):
        now = AT_SYNC_TIME + timedelta(minutes=3)
        assert should_sync(time(8, 0), "America/Los_Angeles", now, 5) is False

    def test_different_hour(self):
        assert should_sync(time(9, 0), "America/Los_Angeles", AT_SYNC_TIME, 5) is False

    def test_before_target_minute(self):
        assert should_sync(time(8, 30), "America/Los_Angeles", AT_SYNC_TIME, 5) is False

    def test_other_timezone(self):
        # 15:02 UTC is 15:02 in London in March (GMT)
        assert should_sync(time(15, 0), "Europe/London", AT_SYNC_TIME, 5) is True

    def test_unknown_timezone(self):
        assert should_sync(time(8, 0), "Mars/Olympus_Mons", AT_SYNC_TIME, 5) is False


class TestSyncTracker:
    def test_hour_key_uses_local_date(self):
        assert hour_key("America/Los_Angeles", AT_SYNC_TIME) == "2024-03-15-08"
        assert hour_key("Asia/Tokyo", AT_SYNC_TIME) == "2024-03-16-00"

    def test_mark_and_check(self):
        tracker = SyncTracker()
        tracker.mark("u1", "2024-03-15-08")
        assert tracker.already_synced("u1", "2024-03-15-08") is True
        assert tracker.already_synced("u1", "2024-03-16-08") is False
        assert tracker.already_synced("u2", "2024-03-15-08") is False

    def test_cleanup_clears_when_oversized(self):
        tracker = SyncTracker(max_entries=2)
        for user in ("a", "b"):
            tracker.mark(user, "k")
        tracker.cleanup()
        assert len(tracker) == 2

        tracker.mark("c", "k")
        tracker.cleanup()
        assert len(tracker) == 0


@pytest.fixture
def fake_service():
    service = MagicMock()
    service.store.list_sync_candidates = AsyncMock(return_value=[])
    service.sync = AsyncMock(return_value=SyncResult(success=True, sessions_synced=2))
    return service


@pytest.fixture
def factory(fake_service):
    @asynccontextmanager
    async def _scope():
        yield fake_service

    return _scope


class TestRunSyncCheck:
    async def test_syncs_only_due_users(self, factory, fake_service):
        due = candidate()
        not_due = candidate(sync_time=time(20, 0))
        fake_service.store.list_sync_candidates.return_value = [due, not_due]

        triggered = await run_sync_check(factory, SyncTracker(), now=AT_SYNC_TIME)

        assert triggered == 1
        fake_service.sync.assert_awaited_once_with(due.user_id)

    async def test_same_window_not_synced_twice(self, factory, fake_service):
        fake_service.store.list_sync_candidates.return_value = [candidate()]
        tracker = SyncTracker()

        first = await run_sync_check(factory, tracker, now=AT_SYNC_TIME)
        second = await run_sync_check(factory, tracker, now=AT_SYNC_TIME + timedelta(minutes=1))

        assert (first, second) == (1, 0)
        assert fake_service.sync.await_count == 1

    async def test_next_day_syncs_again(self, factory, fake_service):
        fake_service.store.list_sync_candidates.return_value = [candidate()]
        tracker = SyncTracker()

        await run_sync_check(factory, tracker, now=AT_SYNC_TIME)
        await run_sync_check(factory, tracker, now=AT_SYNC_TIME + timedelta(days=1))

        assert fake_service.sync.await_count == 2

    async def test_one_failure_does_not_stop_others(self, factory, fake_service):
        first, second = candidate(), candidate()
        fake_service.store.list_sync_candidates.return_value = [first, second]
        fake_service.sync.side_effect = [
            RuntimeError("boom"),
            SyncResult(success=False, error="Eight Sleep not connected"),
        ]

        triggered = await run_sync_check(factory, SyncTracker(), now=AT_SYNC_TIME)

        assert triggered == 2
        assert fake_service.sync.await_count == 2


class TestBuildScheduler:
    def test_registers_single_interval_job(self, factory):
        scheduler = build_scheduler(factory, interval_seconds=60)

        job = scheduler.get_job(JOB_ID)

        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True
        assert job.trigger.interval == timedelta(seconds=60)
        assert job.kwargs["service_factory"] is factory
        assert isinstance(job.kwargs["tracker"], SyncTracker)
