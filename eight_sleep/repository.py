"""Eight Sleep repository: all DB access for the integration.

Implements EightSleepStore for the sync orchestrator (each write commits on
its own) and adds the read queries behind the HTTP surface: session
listing, analysis summary, trends, and the correlation backfill/reads.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, time, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from eight_sleep.domain.models import Integration
from eight_sleep.domain.orm import (
    EightSleepIntegrationModel,
    SleepProtocolCorrelationModel,
    SleepSessionModel,
    SupplementModel,
    SyncScheduleModel,
)
from eight_sleep.parser import round_half_up
from eight_sleep.store import INTEGRATION_TYPE

# Columns rewritten when a night is synced again.
_SESSION_UPDATE_COLUMNS = (
    "integration_id",
    "eight_sleep_interval_id",
    "sleep_score",
    "time_slept",
    "time_to_fall_asleep",
    "time_in_bed",
    "wake_events",
    "wake_event_times",
    "woke_between_2_and_4_am",
    "wake_time_between_2_and_4_am",
    "avg_heart_rate",
    "min_heart_rate",
    "max_heart_rate",
    "avg_hrv",
    "min_hrv",
    "max_hrv",
    "avg_breathing_rate",
    "min_breathing_rate",
    "max_breathing_rate",
    "light_sleep_minutes",
    "deep_sleep_minutes",
    "rem_sleep_minutes",
    "awake_minutes",
    "light_sleep_pct",
    "deep_sleep_pct",
    "rem_sleep_pct",
    "awake_pct",
    "avg_bed_temp",
    "avg_room_temp",
    "avg_room_humidity",
    "sleep_start_time",
    "sleep_end_time",
    "toss_and_turn_count",
    "raw_data",
    "synced_from_api",
)


def _round_or_none(val: Any, digits: int) -> float | None:
    return round_half_up(float(val), digits) if val is not None else None


class EightSleepRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[None]:
        """Commit on success; roll back so the session stays usable on failure."""
        try:
            yield
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

    # --- Integration ---

    async def get_integration(self, user_id: UUID) -> Integration | None:
        result = await self.session.execute(
            select(EightSleepIntegrationModel).where(EightSleepIntegrationModel.user_id == user_id)
        )
        row = result.scalar_one_or_none()
        return Integration.model_validate(row) if row is not None else None

    async def save_integration(self, user_id: UUID, values: dict[str, Any]) -> Integration:
        record = {**values, "user_id": user_id}
        stmt = pg_insert(EightSleepIntegrationModel).values(record)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                **{key: stmt.excluded[key] for key in values},
                "updated_at": func.now(),
            },
        ).returning(EightSleepIntegrationModel)

        async with self._write():
            result = await self.session.execute(
                stmt, execution_options={"populate_existing": True}
            )
            row = result.scalar_one()
            integration = Integration.model_validate(row)
        return integration

    async def update_integration(self, integration_id: UUID, values: dict[str, Any]) -> None:
        if not values:
            return
        async with self._write():
            await self.session.execute(
                update(EightSleepIntegrationModel)
                .where(EightSleepIntegrationModel.id == integration_id)
                .values(**values)
            )

    async def delete_integration(self, user_id: UUID) -> None:
        async with self._write():
            await self.session.execute(
                delete(EightSleepIntegrationModel).where(
                    EightSleepIntegrationModel.user_id == user_id
                )
            )

    async def list_sync_candidates(self) -> list[Integration]:
        result = await self.session.execute(
            select(EightSleepIntegrationModel).where(
                EightSleepIntegrationModel.sync_enabled.is_(True),
                EightSleepIntegrationModel.is_active.is_(True),
            )
        )
        return [Integration.model_validate(row) for row in result.scalars().all()]

    # --- Sync schedule ---

    async def upsert_schedule(
        self, user_id: UUID, *, sync_time: time, timezone: str, is_enabled: bool = True
    ) -> None:
        stmt = pg_insert(SyncScheduleModel).values(
            user_id=user_id,
            integration_type=INTEGRATION_TYPE,
            is_enabled=is_enabled,
            sync_time=sync_time,
            timezone=timezone,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "integration_type"],
            set_={
                "is_enabled": stmt.excluded.is_enabled,
                "sync_time": stmt.excluded.sync_time,
                "timezone": stmt.excluded.timezone,
                "updated_at": func.now(),
            },
        )
        async with self._write():
            await self.session.execute(stmt)

    async def update_schedule(self, user_id: UUID, values: dict[str, Any]) -> None:
        if not values:
            return
        async with self._write():
            await self.session.execute(
                update(SyncScheduleModel)
                .where(
                    SyncScheduleModel.user_id == user_id,
                    SyncScheduleModel.integration_type == INTEGRATION_TYPE,
                )
                .values(**values)
            )

    async def mark_schedule_run(self, user_id: UUID, ran_at: datetime) -> None:
        await self.update_schedule(user_id, {"last_run_at": ran_at})

    async def delete_schedule(self, user_id: UUID) -> None:
        async with self._write():
            await self.session.execute(
                delete(SyncScheduleModel).where(
                    SyncScheduleModel.user_id == user_id,
                    SyncScheduleModel.integration_type == INTEGRATION_TYPE,
                )
            )

    # --- Sleep sessions ---

    async def upsert_sleep_session(self, values: dict[str, Any]) -> None:
        stmt = pg_insert(SleepSessionModel).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "date"],
            set_={
                **{col: stmt.excluded[col] for col in _SESSION_UPDATE_COLUMNS if col in values},
                "updated_at": func.now(),
            },
        )
        async with self._write():
            await self.session.execute(stmt)

    async def list_sessions(
        self,
        user_id: UUID,
        from_date: date | None = None,
        to_date: date | None = None,
        limit: int = 30,
        offset: int = 0,
    ) -> tuple[list[SleepSessionModel], int]:
        """Sessions newest first, plus the total matching count."""
        filters = [SleepSessionModel.user_id == user_id]
        if from_date:
            filters.append(SleepSessionModel.date >= from_date)
        if to_date:
            filters.append(SleepSessionModel.date <= to_date)

        total = await self.session.scalar(
            select(func.count()).select_from(SleepSessionModel).where(*filters)
        )
        result = await self.session.execute(
            select(SleepSessionModel)
            .where(*filters)
            .order_by(SleepSessionModel.date.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def get_session(self, user_id: UUID, session_id: UUID) -> SleepSessionModel | None:
        result = await self.session.execute(
            select(SleepSessionModel).where(
                SleepSessionModel.id == session_id,
                SleepSessionModel.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def count_sessions(self, user_id: UUID) -> int:
        total = await self.session.scalar(
            select(func.count())
            .select_from(SleepSessionModel)
            .where(SleepSessionModel.user_id == user_id)
        )
        return total or 0

    async def get_analysis(self, user_id: UUID, days: int, today: date) -> dict[str, Any]:
        """Aggregate summary over the last `days` nights."""
        woke = case((SleepSessionModel.woke_between_2_and_4_am.is_(True), 1), else_=0)
        query = select(
            func.count().label("total_nights"),
            func.avg(SleepSessionModel.sleep_score).label("avg_sleep_score"),
            func.avg(SleepSessionModel.deep_sleep_pct).label("avg_deep_sleep_pct"),
            func.avg(SleepSessionModel.rem_sleep_pct).label("avg_rem_sleep_pct"),
            func.avg(SleepSessionModel.avg_hrv).label("avg_hrv"),
            func.avg(SleepSessionModel.time_slept / 60.0).label("avg_time_slept_hours"),
            func.coalesce(func.sum(woke), 0).label("nights_with_2_4_am_wake"),
        ).where(
            SleepSessionModel.user_id == user_id,
            SleepSessionModel.date >= today - timedelta(days=days),
        )
        row = (await self.session.execute(query)).one()

        total = row.total_nights or 0
        woke_nights = int(row.nights_with_2_4_am_wake or 0)
        return {
            "total_nights": total,
            "avg_sleep_score": _round_or_none(row.avg_sleep_score, 1),
            "avg_deep_sleep_pct": _round_or_none(row.avg_deep_sleep_pct, 1),
            "avg_rem_sleep_pct": _round_or_none(row.avg_rem_sleep_pct, 1),
            "avg_hrv": _round_or_none(row.avg_hrv, 1),
            "avg_time_slept_hours": _round_or_none(row.avg_time_slept_hours, 2),
            "nights_with_2_4_am_wake": woke_nights,
            "wake_2_4_am_rate": round_half_up(woke_nights / total * 100, 1) if total else 0.0,
        }

    async def get_trends(self, user_id: UUID, days: int, today: date) -> list[dict[str, Any]]:
        result = await self.session.execute(
            select(
                SleepSessionModel.date,
                SleepSessionModel.sleep_score,
                SleepSessionModel.deep_sleep_pct,
                SleepSessionModel.avg_hrv,
                SleepSessionModel.time_slept,
                SleepSessionModel.woke_between_2_and_4_am,
            )
            .where(
                SleepSessionModel.user_id == user_id,
                SleepSessionModel.date >= today - timedelta(days=days),
            )
            .order_by(SleepSessionModel.date.asc())
        )
        return [
            {
                "date": r.date.isoformat(),
                "sleep_score": r.sleep_score,
                "deep_sleep_pct": r.deep_sleep_pct,
                "avg_hrv": r.avg_hrv,
                "time_slept_hours": round_half_up(r.time_slept / 60, 2) if r.time_slept else None,
                "woke_2_4_am": r.woke_between_2_and_4_am,
            }
            for r in result.all()
        ]

    # --- Correlations ---

    async def sessions_without_correlation(
        self, user_id: UUID, since: date
    ) -> list[tuple[UUID, date]]:
        result = await self.session.execute(
            select(SleepSessionModel.id, SleepSessionModel.date)
            .outerjoin(
                SleepProtocolCorrelationModel,
                SleepProtocolCorrelationModel.sleep_session_id == SleepSessionModel.id,
            )
            .where(
                SleepSessionModel.user_id == user_id,
                SleepSessionModel.date >= since,
                SleepProtocolCorrelationModel.id.is_(None),
            )
            .order_by(SleepSessionModel.date.desc())
        )
        return [(r.id, r.date) for r in result.all()]

    async def list_supplements(self, user_id: UUID, active_only: bool = False) -> list[dict]:
        query = select(
            SupplementModel.id,
            SupplementModel.name,
            SupplementModel.brand,
            SupplementModel.timing,
        ).where(SupplementModel.user_id == user_id)
        if active_only:
            query = query.where(SupplementModel.is_active.is_(True))
        result = await self.session.execute(query.order_by(SupplementModel.name))
        return [
            {"id": str(r.id), "name": r.name, "brand": r.brand, "timing": r.timing}
            for r in result.all()
        ]

    async def insert_correlation(
        self, user_id: UUID, sleep_session_id: UUID, night: date, supplements: list[dict]
    ) -> bool:
        """Create the snapshot row for one night. False if it already existed."""
        stmt = (
            pg_insert(SleepProtocolCorrelationModel)
            .values(
                sleep_session_id=sleep_session_id,
                user_id=user_id,
                date=night,
                supplements_taken=supplements,
                routine_items_completed=[],
                biomarkers_recorded=[],
            )
            .on_conflict_do_nothing(index_elements=["sleep_session_id"])
        )
        async with self._write():
            result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def correlated_nights(self, user_id: UUID, since: date) -> list[dict[str, Any]]:
        """Sessions in the window joined with their correlation snapshot."""
        result = await self.session.execute(
            select(
                SleepSessionModel.date,
                SleepSessionModel.sleep_score,
                SleepSessionModel.deep_sleep_pct,
                SleepSessionModel.rem_sleep_pct,
                SleepSessionModel.avg_hrv,
                SleepSessionModel.time_slept,
                SleepSessionModel.woke_between_2_and_4_am,
                SleepProtocolCorrelationModel.supplements_taken,
                SleepProtocolCorrelationModel.alcohol_consumed,
                SleepProtocolCorrelationModel.caffeine_after_noon,
                SleepProtocolCorrelationModel.exercise_that_day,
                SleepProtocolCorrelationModel.high_stress_day,
            )
            .join(
                SleepProtocolCorrelationModel,
                SleepProtocolCorrelationModel.sleep_session_id == SleepSessionModel.id,
            )
            .where(SleepSessionModel.user_id == user_id, SleepSessionModel.date >= since)
            .order_by(SleepSessionModel.date.desc())
        )
        return [dict(r._mapping) for r in result.all()]
