"""Domain models for the Eight Sleep integration.

NightlyMetrics is the flat per-night schema derived from one Eight Sleep
interval. Integration mirrors the persisted integration row; the service
layer works with it instead of ORM rows so the store can be faked.

Nullable measurement fields: None means "not derivable from the source",
never zero.
"""

from datetime import date, datetime, time
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BedSide(StrEnum):
    LEFT = "left"
    RIGHT = "right"
    SOLO = "solo"


class SyncStatus(StrEnum):
    NEVER = "never"
    SYNCING = "syncing"
    SUCCESS = "success"
    FAILED = "failed"


class LoginSession(BaseModel):
    """Session returned by the Eight Sleep login endpoint."""

    user_id: str
    token: str
    expiration_date: datetime | None = None

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> "LoginSession":
        session = body.get("session") or {}
        return cls(
            user_id=str(session["userId"]),
            token=session["token"],
            expiration_date=session.get("expirationDate"),
        )


class NightlyMetrics(BaseModel):
    """One night's sleep, derived from a single Eight Sleep interval."""

    date: date | None

    sleep_score: int | None = None
    time_slept: int | None = None
    time_to_fall_asleep: int | None = None  # not derivable from interval data
    time_in_bed: int | None = None

    wake_events: int = 0
    wake_event_times: list[str] = Field(default_factory=list)
    woke_between_2_and_4_am: bool = False
    wake_time_between_2_and_4_am: time | None = None

    avg_heart_rate: float | None = None
    min_heart_rate: float | None = None
    max_heart_rate: float | None = None

    avg_hrv: float | None = None
    min_hrv: float | None = None
    max_hrv: float | None = None

    avg_breathing_rate: float | None = None
    min_breathing_rate: float | None = None
    max_breathing_rate: float | None = None

    light_sleep_minutes: int | None = None
    deep_sleep_minutes: int | None = None
    rem_sleep_minutes: int | None = None
    awake_minutes: int | None = None

    light_sleep_pct: float | None = None
    deep_sleep_pct: float | None = None
    rem_sleep_pct: float | None = None
    awake_pct: float | None = None

    avg_bed_temp: float | None = None
    avg_room_temp: float | None = None
    avg_room_humidity: float | None = None  # not present in interval data

    sleep_start_time: datetime | None = None
    sleep_end_time: datetime | None = None

    toss_and_turn_count: int | None = None


class Integration(BaseModel):
    """Persisted state of one user's Eight Sleep connection."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    email_encrypted: str
    password_encrypted: str
    eight_sleep_user_id: str | None = None
    session_token_encrypted: str | None = None
    token_expires_at: datetime | None = None
    device_id: str | None = None
    side: BedSide | None = None
    sync_enabled: bool = True
    sync_time: time = time(8, 0)
    sync_timezone: str = "America/Los_Angeles"
    is_active: bool = True
    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = SyncStatus.NEVER
    consecutive_failures: int = 0
    last_error_message: str | None = None


# --- Service inputs ---


class ConnectRequest(BaseModel):
    email: str = ""
    password: str = ""
    sync_time: str | None = None
    sync_timezone: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v


class SyncRequest(BaseModel):
    from_date: date | None = None
    to_date: date | None = None
    initial: bool = False


class UpdateSettingsRequest(BaseModel):
    sync_enabled: bool | None = None
    sync_time: str | None = None
    sync_timezone: str | None = None


# --- Service results ---


class ConnectResult(BaseModel):
    success: bool
    integration_id: UUID | None = None
    eight_sleep_user_id: str | None = None
    device_id: str | None = None
    side: BedSide | None = None
    error: str | None = None


class SyncResult(BaseModel):
    success: bool
    sessions_synced: int = 0
    latest_date: date | None = None
    error: str | None = None


class OperationResult(BaseModel):
    success: bool
    error: str | None = None


class IntegrationStatus(BaseModel):
    connected: bool
    integration_id: UUID | None = None
    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = None
    sync_enabled: bool = False
    sync_time: time | None = None
    sync_timezone: str | None = None
    consecutive_failures: int = 0
    error_message: str | None = None
    device_id: str | None = None
    side: BedSide | None = None
