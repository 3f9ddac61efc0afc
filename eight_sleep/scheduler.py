"""APScheduler job for automatic daily syncs.

Every `scheduler_interval_seconds` the job lists active integrations with
sync enabled and syncs each one whose local sync time has arrived: same
local hour as the target, minute within [target, target + window). A
per-user (local date, hour) key stops a user being synced twice in one
window. Users are synced one after another; one failure does not stop
the rest.

The scheduler runs inside the API process (started from main.py's lifespan).
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from eight_sleep.service import EightSleepService
from shared.config import settings

logger = structlog.get_logger()

JOB_ID = "eight_sleep_sync_check"
MAX_TRACKED_USERS = 1000

ServiceFactory = Callable[[], AbstractAsyncContextManager[EightSleepService]]


def _local_now(timezone: str, now: datetime) -> datetime | None:
    try:
        return now.astimezone(ZoneInfo(timezone))
    except (ZoneInfoNotFoundError, ValueError):
        return None


def hour_key(timezone: str, now: datetime) -> str | None:
    local = _local_now(timezone, now)
    if local is None:
        return None
    return f"{local.date().isoformat()}-{local.hour:02d}"


def should_sync(
    sync_time: time,
    timezone: str,
    now: datetime,
    window_minutes: int = settings.scheduler_window_minutes,
) -> bool:
    """True when `now`, seen in `timezone`, falls in the sync window. Unknown zone -> False."""
    local = _local_now(timezone, now)
    if local is None:
        return False
    if local.hour != sync_time.hour:
        return False
    return sync_time.minute <= local.minute < sync_time.minute + window_minutes


class SyncTracker:
    """Remembers which (local date, hour) each user was last synced in."""

    def __init__(self, max_entries: int = MAX_TRACKED_USERS):
        self._synced: dict[str, str] = {}
        self._max_entries = max_entries

    def __len__(self) -> int:
        return len(self._synced)

    def already_synced(self, user_id: str, key: str) -> bool:
        return self._synced.get(user_id) == key

    def mark(self, user_id: str, key: str) -> None:
        self._synced[user_id] = key

    def cleanup(self) -> None:
        if len(self._synced) > self._max_entries:
            self._synced.clear()


async def run_sync_check(
    service_factory: ServiceFactory,
    tracker: SyncTracker,
    now: datetime | None = None,
) -> int:
    """One scheduler tick. Returns the number of syncs triggered."""
    now = now or datetime.now(UTC)

    async with service_factory() as service:
        candidates = await service.store.list_sync_candidates()

    triggered = 0
    for integration in candidates:
        user = str(integration.user_id)
        if not integration.sync_time or not integration.sync_timezone:
            continue
        if not should_sync(integration.sync_time, integration.sync_timezone, now):
            continue

        key = hour_key(integration.sync_timezone, now)
        if key is None or tracker.already_synced(user, key):
            continue
        tracker.mark(user, key)
        triggered += 1

        logger.info("scheduled_sync_triggered", user_id=user)
        try:
            async with service_factory() as service:
                result = await service.sync(integration.user_id)
        except Exception:
            logger.exception("scheduled_sync_error", user_id=user)
            continue

        if result.success:
            logger.info(
                "scheduled_sync_completed", user_id=user, sessions_synced=result.sessions_synced
            )
        else:
            logger.warning("scheduled_sync_failed", user_id=user, error=result.error)

    tracker.cleanup()
    return triggered


def build_scheduler(
    service_factory: ServiceFactory,
    tracker: SyncTracker | None = None,
    interval_seconds: int = settings.scheduler_interval_seconds,
) -> AsyncIOScheduler:
    """Create the scheduler with the sync-check job registered (not started)."""
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_sync_check,
        trigger="interval",
        seconds=interval_seconds,
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(UTC),
        kwargs={"service_factory": service_factory, "tracker": tracker or SyncTracker()},
    )
    return scheduler
