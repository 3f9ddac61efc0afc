"""Shared test fixtures."""

import sys
from datetime import UTC, date, datetime, time, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import OperationalError

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from eight_sleep.client import ApiResult, EightSleepClient  # noqa: E402
from eight_sleep.domain.models import Integration, LoginSession  # noqa: E402
from shared.crypto import Cipher  # noqa: E402

USER_ID = UUID("a1b2c3d4-5678-90ab-cdef-1234567890ab")
ES_USER_ID = "es-user-1"
TEST_KEY = "0123456789abcdef" * 4
NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


def _db_error(operation: str) -> OperationalError:
    return OperationalError(operation, {}, Exception("database unavailable"))


class FakeStore:
    """In-memory EightSleepStore.

    Operation names listed in `fail_on` raise a SQLAlchemy error.
    """

    def __init__(self):
        self.integrations: dict[UUID, Integration] = {}
        self.schedules: dict[UUID, dict[str, Any]] = {}
        self.sessions: dict[tuple[UUID, date], dict[str, Any]] = {}
        self.status_history: list[str] = []
        self.fail_on: set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise _db_error(operation)

    async def get_integration(self, user_id: UUID) -> Integration | None:
        return self.integrations.get(user_id)

    async def save_integration(self, user_id: UUID, values: dict[str, Any]) -> Integration:
        self._check("save_integration")
        existing = self.integrations.get(user_id)
        integration = Integration(
            id=existing.id if existing else uuid4(), user_id=user_id, **values
        )
        self.integrations[user_id] = integration
        return integration

    async def update_integration(self, integration_id: UUID, values: dict[str, Any]) -> None:
        self._check("update_integration")
        for user_id, integration in self.integrations.items():
            if integration.id == integration_id:
                if "last_sync_status" in values:
                    self.status_history.append(values["last_sync_status"])
                self.integrations[user_id] = integration.model_copy(update=values)
                return

    async def delete_integration(self, user_id: UUID) -> None:
        self._check("delete_integration")
        integration = self.integrations.pop(user_id, None)
        if integration is not None:
            self.sessions = {
                key: row
                for key, row in self.sessions.items()
                if row["integration_id"] != integration.id
            }

    async def list_sync_candidates(self) -> list[Integration]:
        return [i for i in self.integrations.values() if i.sync_enabled and i.is_active]

    async def upsert_schedule(
        self, user_id: UUID, *, sync_time: time, timezone: str, is_enabled: bool = True
    ) -> None:
        self._check("upsert_schedule")
        schedule = self.schedules.setdefault(user_id, {"last_run_at": None})
        schedule.update(sync_time=sync_time, timezone=timezone, is_enabled=is_enabled)

    async def update_schedule(self, user_id: UUID, values: dict[str, Any]) -> None:
        self._check("update_schedule")
        if user_id in self.schedules:
            self.schedules[user_id].update(values)

    async def mark_schedule_run(self, user_id: UUID, ran_at: datetime) -> None:
        await self.update_schedule(user_id, {"last_run_at": ran_at})

    async def delete_schedule(self, user_id: UUID) -> None:
        self._check("delete_schedule")
        self.schedules.pop(user_id, None)

    async def upsert_sleep_session(self, values: dict[str, Any]) -> None:
        self._check("upsert_sleep_session")
        self.sessions[(values["user_id"], values["date"])] = values


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def cipher():
    return Cipher(TEST_KEY)


@pytest.fixture
def clock():
    return lambda: NOW


def login_ok(
    user_id: str = ES_USER_ID,
    token: str = "fresh-token",
    expires: datetime = NOW + timedelta(days=1),
) -> ApiResult:
    return ApiResult(
        success=True,
        data=LoginSession(user_id=user_id, token=token, expiration_date=expires),
        status_code=200,
    )


@pytest.fixture
def es_client():
    """EightSleepClient double; every call succeeds with an empty payload by default."""
    client = AsyncMock(spec=EightSleepClient)
    client.login.return_value = login_ok()
    client.get_devices.return_value = ApiResult(success=True, data=[], status_code=200)
    client.get_intervals.return_value = ApiResult(success=True, data=[], status_code=200)
    return client


@pytest.fixture
def make_integration(store, cipher):
    """Seed the store with a connected integration holding a still-valid token."""

    def _make(**overrides) -> Integration:
        values = {
            "id": uuid4(),
            "user_id": USER_ID,
            "email_encrypted": cipher.encrypt("sleeper@example.com"),
            "password_encrypted": cipher.encrypt("hunter2"),
            "eight_sleep_user_id": ES_USER_ID,
            "session_token_encrypted": cipher.encrypt("stored-token"),
            "token_expires_at": NOW + timedelta(days=1),
            "sync_time": time(8, 0),
            "sync_timezone": "America/Los_Angeles",
            "last_sync_status": "never",
            **overrides,
        }
        integration = Integration(**values)
        store.integrations[integration.user_id] = integration
        return integration

    return _make


@pytest.fixture
def sample_interval():
    """One night: in bed 23:00 PDT on Mar 14, one wake at 02:10 local."""
    return {
        "id": "interval-1",
        "ts": "2024-03-15T06:00:00.000Z",
        "score": 82,
        "stages": [
            {"stage": "awake", "duration": 600},
            {"stage": "light", "duration": 7200},
            {"stage": "deep", "duration": 3600},
            {"stage": "awake", "duration": 300},
            {"stage": "rem", "duration": 5400},
            {"stage": "light", "duration": 1800},
        ],
        "timeseries": {
            "heartRate": [["2024-03-15T06:00:00Z", 55], ["2024-03-15T07:00:00Z", 60], ["2024-03-15T08:00:00Z", 65]],
            "hrv": [
                {"time": "2024-03-15T06:00:00Z", "value": 40},
                {"time": "2024-03-15T07:00:00Z", "value": 50},
            ],
            "respiratoryRate": [["2024-03-15T06:00:00Z", 14.5], ["2024-03-15T07:00:00Z", 15.5]],
            "tnt": [["2024-03-15T06:00:00Z", 3], ["2024-03-15T07:00:00Z", 4]],
            "bedTemperature": [["2024-03-15T06:00:00Z", 30.0], ["2024-03-15T07:00:00Z", 31.0]],
            "roomTemperature": [["2024-03-15T06:00:00Z", 20.0]],
        },
    }
