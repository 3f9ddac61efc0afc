"""Integration test: repository writes against real Postgres.

Verifies that a night synced twice stays one row keyed by (user_id, date),
that the integration upsert keeps its id, that deleting an integration
takes its nights with it, and that the correlation backfill is idempotent.
"""

from datetime import date

from sqlalchemy import func, select

from eight_sleep.domain.orm import SleepSessionModel, SupplementModel
from eight_sleep.parser import parse_interval


def night_record(integration, interval) -> dict:
    return {
        **parse_interval(interval).model_dump(),
        "user_id": integration.user_id,
        "integration_id": integration.id,
        "eight_sleep_interval_id": interval["id"],
        "raw_data": interval,
        "synced_from_api": True,
    }


async def count_nights(db_session, user_id) -> int:
    result = await db_session.execute(
        select(func.count()).where(SleepSessionModel.user_id == user_id)
    )
    return result.scalar_one()


async def test_same_night_twice_yields_one_row(repo, db_session, integration, sample_interval):
    await repo.upsert_sleep_session(night_record(integration, sample_interval))
    await repo.upsert_sleep_session(
        night_record(integration, {**sample_interval, "score": 91})
    )

    assert await count_nights(db_session, integration.user_id) == 1

    rows, total = await repo.list_sessions(integration.user_id)
    assert total == 1
    assert rows[0].sleep_score == 91
    assert rows[0].date == date(2024, 3, 15)
    assert rows[0].wake_event_times == [
        "2024-03-15T06:00:00.000Z",
        "2024-03-15T09:10:00.000Z",
    ]


async def test_different_nights_yield_separate_rows(
    repo, db_session, integration, sample_interval
):
    await repo.upsert_sleep_session(night_record(integration, sample_interval))
    await repo.upsert_sleep_session(
        night_record(
            integration,
            {**sample_interval, "id": "interval-0", "ts": "2024-03-14T06:00:00.000Z"},
        )
    )

    rows, total = await repo.list_sessions(integration.user_id)
    assert total == 2
    assert [r.date for r in rows] == [date(2024, 3, 15), date(2024, 3, 14)]


async def test_reconnect_keeps_integration_id(repo, integration):
    again = await repo.save_integration(
        integration.user_id,
        {
            "email_encrypted": "enc-email-2",
            "password_encrypted": "enc-password-2",
            "last_sync_status": "never",
            "consecutive_failures": 0,
        },
    )

    assert again.id == integration.id
    assert again.email_encrypted == "enc-email-2"


async def test_delete_integration_cascades_to_nights(
    repo, db_session, integration, sample_interval
):
    await repo.upsert_sleep_session(night_record(integration, sample_interval))

    await repo.delete_integration(integration.user_id)

    assert await repo.get_integration(integration.user_id) is None
    assert await count_nights(db_session, integration.user_id) == 0


async def test_correlation_backfill_is_idempotent(
    repo, db_session, integration, sample_interval
):
    user_id = integration.user_id
    db_session.add_all(
        [
            SupplementModel(user_id=user_id, name="Magnesium", brand="Thorne", is_active=True),
            SupplementModel(user_id=user_id, name="Zinc", is_active=False),
        ]
    )
    await db_session.commit()
    await repo.upsert_sleep_session(night_record(integration, sample_interval))

    pending = await repo.sessions_without_correlation(user_id, date(2024, 1, 1))
    assert len(pending) == 1
    session_id, night = pending[0]

    supplements = await repo.list_supplements(user_id, active_only=True)
    assert [s["name"] for s in supplements] == ["Magnesium"]

    assert await repo.insert_correlation(user_id, session_id, night, supplements) is True
    assert await repo.insert_correlation(user_id, session_id, night, supplements) is False
    assert await repo.sessions_without_correlation(user_id, date(2024, 1, 1)) == []

    [correlated] = await repo.correlated_nights(user_id, date(2024, 1, 1))
    assert correlated["sleep_score"] == 82
    assert correlated["supplements_taken"][0]["name"] == "Magnesium"
    assert correlated["alcohol_consumed"] is None


async def test_analysis_summary(repo, integration, sample_interval):
    await repo.upsert_sleep_session(night_record(integration, sample_interval))

    analysis = await repo.get_analysis(integration.user_id, 30, date(2024, 3, 20))

    assert analysis["total_nights"] == 1
    assert analysis["avg_sleep_score"] == 82.0
    assert analysis["avg_time_slept_hours"] == 5.0
    assert analysis["nights_with_2_4_am_wake"] == 0
    assert analysis["wake_2_4_am_rate"] == 0.0
