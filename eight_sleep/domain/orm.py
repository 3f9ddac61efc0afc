"""SQLAlchemy ORM models for the Eight Sleep tables.

Tables:
- eight_sleep_integrations: one connection per user, encrypted credentials + sync state
- sleep_sessions: one row per user per night, derived from an Eight Sleep interval
- sleep_protocol_correlation: per-night snapshot of supplements and daily factors
- sync_schedules: per-user, per-integration sync time preferences

`supplements` belongs to the protocol module; only the columns read by the
correlation backfill are mapped here and nothing in this package writes it.
"""

from datetime import UTC, datetime, time
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _decimal(precision: int, scale: int = 2) -> Numeric:
    return Numeric(precision, scale, asdecimal=False)


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )


class EightSleepIntegrationModel(Base):
    __tablename__ = "eight_sleep_integrations"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)

    # Encrypted credentials (AES-256-GCM storage strings)
    email_encrypted: Mapped[str] = mapped_column(Text, nullable=False)
    password_encrypted: Mapped[str] = mapped_column(Text, nullable=False)

    # Third-party account
    eight_sleep_user_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    device_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    side: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Sync preferences
    sync_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    sync_time: Mapped[time] = mapped_column(
        Time, nullable=False, server_default=text("'08:00:00'")
    )
    sync_timezone: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'America/Los_Angeles'")
    )

    # Status tracking
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    extra: Mapped[dict] = mapped_column(
        "metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_eight_sleep_integrations_user"),
        CheckConstraint("side IN ('left', 'right', 'solo')", name="ck_integration_side"),
        CheckConstraint(
            "last_sync_status IN ('success', 'failed', 'syncing', 'never')",
            name="ck_integration_sync_status",
        ),
        Index(
            "idx_eight_sleep_integrations_sync_enabled",
            "sync_enabled",
            postgresql_where=text("sync_enabled = true"),
        ),
    )


class SleepSessionModel(Base):
    __tablename__ = "sleep_sessions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    integration_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("eight_sleep_integrations.id", ondelete="CASCADE"),
        nullable=True,
    )

    date = mapped_column(Date, nullable=False)
    eight_sleep_interval_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Scores (0-100)
    sleep_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sleep_quality_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Durations (minutes)
    time_slept: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_to_fall_asleep: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_in_bed: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Wake events
    wake_events: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    wake_event_times: Mapped[list] = mapped_column(
        JSONB, nullable=False, server_default=text("'[]'::jsonb")
    )
    woke_between_2_and_4_am: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    wake_time_between_2_and_4_am: Mapped[time | None] = mapped_column(Time, nullable=True)

    # Vitals
    avg_heart_rate: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    min_heart_rate: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    max_heart_rate: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    resting_heart_rate: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)

    avg_hrv: Mapped[float | None] = mapped_column(_decimal(6), nullable=True)
    min_hrv: Mapped[float | None] = mapped_column(_decimal(6), nullable=True)
    max_hrv: Mapped[float | None] = mapped_column(_decimal(6), nullable=True)

    avg_breathing_rate: Mapped[float | None] = mapped_column(_decimal(4), nullable=True)
    min_breathing_rate: Mapped[float | None] = mapped_column(_decimal(4), nullable=True)
    max_breathing_rate: Mapped[float | None] = mapped_column(_decimal(4), nullable=True)

    # Stages (minutes, then percent of time in bed)
    light_sleep_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deep_sleep_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rem_sleep_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    awake_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    light_sleep_pct: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    deep_sleep_pct: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    rem_sleep_pct: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    awake_pct: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)

    # Environment
    avg_bed_temp: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    avg_room_temp: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    avg_room_humidity: Mapped[float | None] = mapped_column(_decimal(5), nullable=True)
    bed_temp_level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    sleep_start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sleep_end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    toss_and_turn_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    raw_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    synced_from_api: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_sleep_sessions_user_date"),
        CheckConstraint(
            "sleep_score >= 0 AND sleep_score <= 100", name="ck_sleep_sessions_score_range"
        ),
        CheckConstraint(
            "sleep_quality_score >= 0 AND sleep_quality_score <= 100",
            name="ck_sleep_sessions_quality_range",
        ),
        Index("idx_sleep_sessions_user_date", "user_id", text("date DESC")),
        Index(
            "idx_sleep_sessions_woke_2_4_am",
            "user_id",
            "woke_between_2_and_4_am",
            postgresql_where=text("woke_between_2_and_4_am = true"),
        ),
    )


class SleepProtocolCorrelationModel(Base):
    __tablename__ = "sleep_protocol_correlation"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    sleep_session_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("sleep_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    date = mapped_column(Date, nullable=False)

    # Snapshots: [{id, name, brand, timing}], [{routine_id, item_id, ...}], [{id, name, value, unit}]
    supplements_taken: Mapped[list] = mapped_column(
        JSONB, nullable=False, server_default=text("'[]'::jsonb")
    )
    routine_items_completed: Mapped[list] = mapped_column(
        JSONB, nullable=False, server_default=text("'[]'::jsonb")
    )
    biomarkers_recorded: Mapped[list] = mapped_column(
        JSONB, nullable=False, server_default=text("'[]'::jsonb")
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Daily factors; NULL means "not recorded"
    alcohol_consumed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    caffeine_after_noon: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    exercise_that_day: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    high_stress_day: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        UniqueConstraint("sleep_session_id", name="uq_sleep_protocol_correlation_session"),
        Index("idx_sleep_protocol_correlation_user_id", "user_id"),
    )


class SyncScheduleModel(Base):
    __tablename__ = "sync_schedules"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    integration_type: Mapped[str] = mapped_column(Text, nullable=False)

    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    sync_time: Mapped[time] = mapped_column(
        Time, nullable=False, server_default=text("'08:00:00'")
    )
    timezone: Mapped[str] = mapped_column(
        Text, nullable=False, server_default=text("'America/Los_Angeles'")
    )

    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = _updated_at()

    __table_args__ = (
        UniqueConstraint("user_id", "integration_type", name="uq_sync_schedules_user_type"),
        CheckConstraint(
            "integration_type IN ('eight_sleep', 'oura', 'whoop', 'garmin', 'apple_health')",
            name="ck_sync_schedules_integration_type",
        ),
    )


class SupplementModel(Base):
    """Read-only view of the protocol module's supplements table."""

    __tablename__ = "supplements"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    brand: Mapped[str | None] = mapped_column(Text, nullable=True)
    timing: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
