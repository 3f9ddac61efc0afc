"""Initial schema: eight_sleep_integrations, sleep_sessions, sleep_protocol_correlation, sync_schedules

The supplements table read by the correlation backfill is owned by the
protocol module's migrations and is not created here.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")
    )


def _decimal(name: str, precision: int) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision, 2), nullable=True)


def _jsonb_list(name: str) -> sa.Column:
    return sa.Column(name, postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb"))


def upgrade() -> None:
    # Ensure pgcrypto is available for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # --- eight_sleep_integrations ---
    op.create_table(
        "eight_sleep_integrations",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email_encrypted", sa.Text, nullable=False),
        sa.Column("password_encrypted", sa.Text, nullable=False),
        sa.Column("eight_sleep_user_id", sa.Text, nullable=True),
        sa.Column("session_token_encrypted", sa.Text, nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("device_id", sa.Text, nullable=True),
        sa.Column("side", sa.Text, nullable=True),
        sa.Column("sync_enabled", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("sync_time", sa.Time, nullable=False, server_default=sa.text("'08:00:00'")),
        sa.Column(
            "sync_timezone",
            sa.Text,
            nullable=False,
            server_default=sa.text("'America/Los_Angeles'"),
        ),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_status", sa.Text, nullable=True),
        sa.Column("consecutive_failures", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("last_error_message", sa.Text, nullable=True),
        sa.Column(
            "metadata", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")
        ),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("user_id", name="uq_eight_sleep_integrations_user"),
        sa.CheckConstraint("side IN ('left', 'right', 'solo')", name="ck_integration_side"),
        sa.CheckConstraint(
            "last_sync_status IN ('success', 'failed', 'syncing', 'never')",
            name="ck_integration_sync_status",
        ),
    )
    op.create_index(
        "idx_eight_sleep_integrations_sync_enabled",
        "eight_sleep_integrations",
        ["sync_enabled"],
        postgresql_where=sa.text("sync_enabled = true"),
    )

    # --- sleep_sessions ---
    op.create_table(
        "sleep_sessions",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "integration_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("eight_sleep_integrations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("eight_sleep_interval_id", sa.Text, nullable=True),
        sa.Column("sleep_score", sa.Integer, nullable=True),
        sa.Column("sleep_quality_score", sa.Integer, nullable=True),
        sa.Column("time_slept", sa.Integer, nullable=True),
        sa.Column("time_to_fall_asleep", sa.Integer, nullable=True),
        sa.Column("time_in_bed", sa.Integer, nullable=True),
        sa.Column("wake_events", sa.Integer, nullable=False, server_default=sa.text("0")),
        _jsonb_list("wake_event_times"),
        sa.Column(
            "woke_between_2_and_4_am", sa.Boolean, nullable=False, server_default=sa.text("false")
        ),
        sa.Column("wake_time_between_2_and_4_am", sa.Time, nullable=True),
        _decimal("avg_heart_rate", 5),
        _decimal("min_heart_rate", 5),
        _decimal("max_heart_rate", 5),
        _decimal("resting_heart_rate", 5),
        _decimal("avg_hrv", 6),
        _decimal("min_hrv", 6),
        _decimal("max_hrv", 6),
        _decimal("avg_breathing_rate", 4),
        _decimal("min_breathing_rate", 4),
        _decimal("max_breathing_rate", 4),
        sa.Column("light_sleep_minutes", sa.Integer, nullable=True),
        sa.Column("deep_sleep_minutes", sa.Integer, nullable=True),
        sa.Column("rem_sleep_minutes", sa.Integer, nullable=True),
        sa.Column("awake_minutes", sa.Integer, nullable=True),
        _decimal("light_sleep_pct", 5),
        _decimal("deep_sleep_pct", 5),
        _decimal("rem_sleep_pct", 5),
        _decimal("awake_pct", 5),
        _decimal("avg_bed_temp", 5),
        _decimal("avg_room_temp", 5),
        _decimal("avg_room_humidity", 5),
        sa.Column("bed_temp_level", sa.Integer, nullable=True),
        sa.Column("sleep_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sleep_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("toss_and_turn_count", sa.Integer, nullable=True),
        sa.Column("raw_data", postgresql.JSONB, nullable=True),
        sa.Column("synced_from_api", sa.Boolean, nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("user_id", "date", name="uq_sleep_sessions_user_date"),
        sa.CheckConstraint(
            "sleep_score >= 0 AND sleep_score <= 100", name="ck_sleep_sessions_score_range"
        ),
        sa.CheckConstraint(
            "sleep_quality_score >= 0 AND sleep_quality_score <= 100",
            name="ck_sleep_sessions_quality_range",
        ),
    )
    op.create_index(
        "idx_sleep_sessions_user_date", "sleep_sessions", ["user_id", sa.text("date DESC")]
    )
    op.create_index(
        "idx_sleep_sessions_woke_2_4_am",
        "sleep_sessions",
        ["user_id", "woke_between_2_and_4_am"],
        postgresql_where=sa.text("woke_between_2_and_4_am = true"),
    )

    # --- sleep_protocol_correlation ---
    op.create_table(
        "sleep_protocol_correlation",
        _id_column(),
        sa.Column(
            "sleep_session_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("sleep_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date, nullable=False),
        _jsonb_list("supplements_taken"),
        _jsonb_list("routine_items_completed"),
        _jsonb_list("biomarkers_recorded"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("alcohol_consumed", sa.Boolean, nullable=True),
        sa.Column("caffeine_after_noon", sa.Boolean, nullable=True),
        sa.Column("exercise_that_day", sa.Boolean, nullable=True),
        sa.Column("high_stress_day", sa.Boolean, nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint("sleep_session_id", name="uq_sleep_protocol_correlation_session"),
    )
    op.create_index(
        "idx_sleep_protocol_correlation_user_id", "sleep_protocol_correlation", ["user_id"]
    )

    # --- sync_schedules ---
    op.create_table(
        "sync_schedules",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("integration_type", sa.Text, nullable=False),
        sa.Column("is_enabled", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("sync_time", sa.Time, nullable=False, server_default=sa.text("'08:00:00'")),
        sa.Column(
            "timezone", sa.Text, nullable=False, server_default=sa.text("'America/Los_Angeles'")
        ),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("user_id", "integration_type", name="uq_sync_schedules_user_type"),
        sa.CheckConstraint(
            "integration_type IN ('eight_sleep', 'oura', 'whoop', 'garmin', 'apple_health')",
            name="ck_sync_schedules_integration_type",
        ),
    )


def downgrade() -> None:
    op.drop_table("sync_schedules")
    op.drop_index("idx_sleep_protocol_correlation_user_id", table_name="sleep_protocol_correlation")
    op.drop_table("sleep_protocol_correlation")
    op.drop_index("idx_sleep_sessions_woke_2_4_am", table_name="sleep_sessions")
    op.drop_index("idx_sleep_sessions_user_date", table_name="sleep_sessions")
    op.drop_table("sleep_sessions")
    op.drop_index(
        "idx_eight_sleep_integrations_sync_enabled", table_name="eight_sleep_integrations"
    )
    op.drop_table("eight_sleep_integrations")
