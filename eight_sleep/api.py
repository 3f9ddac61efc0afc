"""FastAPI router for the Eight Sleep integration.

Endpoints (all under /api/v1/eight-sleep, all require a bearer token):
- POST   /connect, DELETE /disconnect, GET /status, PATCH /settings
- POST   /sync
- GET    /sessions, /sessions/{id}, /analysis, /trends
- GET    /correlations, /correlations/summary, /correlations/factors
- POST   /correlations/build
- GET    /timezones
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from functools import partial
from typing import TYPE_CHECKING, Any
from uuid import UUID

import httpx
import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

if TYPE_CHECKING:
    from eight_sleep.domain.orm import SleepSessionModel

from eight_sleep.client import EightSleepClient
from eight_sleep.correlation import SleepCorrelationService
from eight_sleep.domain.models import ConnectRequest, SyncRequest, UpdateSettingsRequest
from eight_sleep.domain.validation import COMMON_TIMEZONES, is_valid_timezone, parse_sync_time
from eight_sleep.repository import EightSleepRepository
from eight_sleep.service import EightSleepService
from shared.auth import get_current_user_id
from shared.config import settings
from shared.crypto import Cipher
from shared.database import get_session, session_scope
from shared.exceptions import (
    IntegrationError,
    InvalidDateRangeError,
    InvalidSyncTimeError,
    InvalidTimezoneError,
    NotFoundError,
    ValidationError,
)
from shared.metrics import api_requests_total, api_response_duration_seconds
from shared.middleware import request_id_var

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/eight-sleep", tags=["eight-sleep"])

_SESSION_FIELDS = (
    "eight_sleep_interval_id",
    "sleep_score",
    "sleep_quality_score",
    "time_slept",
    "time_to_fall_asleep",
    "time_in_bed",
    "wake_events",
    "wake_event_times",
    "woke_between_2_and_4_am",
    "avg_heart_rate",
    "min_heart_rate",
    "max_heart_rate",
    "resting_heart_rate",
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
    "bed_temp_level",
    "toss_and_turn_count",
    "synced_from_api",
)


# --- Dependencies ---


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def get_cipher() -> Cipher:
    return Cipher(settings.encryption_key)


def get_repository(session: AsyncSession = Depends(get_session)) -> EightSleepRepository:
    return EightSleepRepository(session)


def get_service(
    repository: EightSleepRepository = Depends(get_repository),
    http: httpx.AsyncClient = Depends(get_http_client),
    cipher: Cipher = Depends(get_cipher),
) -> EightSleepService:
    return EightSleepService(repository, EightSleepClient(http), cipher)


def get_correlation_service(
    repository: EightSleepRepository = Depends(get_repository),
) -> SleepCorrelationService:
    return SleepCorrelationService(repository)


@asynccontextmanager
async def service_scope(http: httpx.AsyncClient) -> AsyncIterator[EightSleepService]:
    """A service bound to its own DB session, for work outside a request."""
    async with session_scope() as session:
        yield EightSleepService(
            EightSleepRepository(session), EightSleepClient(http), get_cipher()
        )


async def _initial_sync(http: httpx.AsyncClient, user_id: UUID) -> None:
    async with service_scope(http) as service:
        result = await service.sync(user_id, initial_sync=True)
    if not result.success:
        logger.warning("initial_sync_failed", user_id=str(user_id), error=result.error)


def get_initial_sync_runner(
    http: httpx.AsyncClient = Depends(get_http_client),
) -> Callable[[UUID], Awaitable[None]]:
    return partial(_initial_sync, http)


# --- Request bodies ---


class SettingsBody(BaseModel):
    sync_enabled: bool | None = None
    sync_time: str | None = None
    sync_timezone: str | None = None


# --- Response helpers ---


def _meta() -> dict[str, Any]:
    return {
        "request_id": request_id_var.get(""),
        "timestamp": datetime.now(UTC).isoformat(),
        "api_version": settings.api_version,
    }


def _observe(endpoint: str, method: str, started: float, status_code: int = 200) -> None:
    api_requests_total.labels(
        endpoint=endpoint, method=method, status_code=str(status_code)
    ).inc()
    api_response_duration_seconds.labels(endpoint=endpoint).observe(time.monotonic() - started)


def _validate_schedule(sync_time: str | None, sync_timezone: str | None) -> None:
    if sync_timezone and not is_valid_timezone(sync_timezone):
        raise InvalidTimezoneError(sync_timezone)
    if sync_time and parse_sync_time(sync_time) is None:
        raise InvalidSyncTimeError(sync_time)


def _session_to_dict(row: SleepSessionModel, include_raw: bool = False) -> dict[str, Any]:
    """Convert a SleepSessionModel ORM row to an API response dict."""
    data: dict[str, Any] = {
        "id": str(row.id),
        "user_id": str(row.user_id),
        "integration_id": str(row.integration_id) if row.integration_id else None,
        "date": row.date.isoformat(),
        **{name: getattr(row, name) for name in _SESSION_FIELDS},
        "wake_time_between_2_and_4_am": (
            row.wake_time_between_2_and_4_am.isoformat()
            if row.wake_time_between_2_and_4_am
            else None
        ),
        "sleep_start_time": row.sleep_start_time.isoformat() if row.sleep_start_time else None,
        "sleep_end_time": row.sleep_end_time.isoformat() if row.sleep_end_time else None,
    }
    if include_raw:
        data["raw_data"] = row.raw_data
    return data


# --- Connection ---


@router.post("/connect")
async def connect(
    body: ConnectRequest,
    background_tasks: BackgroundTasks,
    user_id: UUID = Depends(get_current_user_id),
    service: EightSleepService = Depends(get_service),
    run_initial_sync: Callable[[UUID], Awaitable[None]] = Depends(get_initial_sync_runner),
):
    """Connect an Eight Sleep account and start a 30-day initial sync in the background."""
    started = time.monotonic()
    if not body.email or not body.password:
        raise ValidationError("Email and password are required")
    _validate_schedule(body.sync_time, body.sync_timezone)

    result = await service.connect(user_id, body)
    if not result.success:
        raise IntegrationError(result.error or "Failed to connect Eight Sleep")

    background_tasks.add_task(run_initial_sync, user_id)

    _observe("connect", "POST", started)
    return {
        "message": "Eight Sleep connected successfully",
        "integration_id": str(result.integration_id),
        "device_id": result.device_id,
        "side": result.side,
        "meta": _meta(),
    }


@router.delete("/disconnect")
async def disconnect(
    user_id: UUID = Depends(get_current_user_id),
    service: EightSleepService = Depends(get_service),
):
    started = time.monotonic()
    result = await service.disconnect(user_id)
    if not result.success:
        raise IntegrationError(result.error or "Failed to disconnect Eight Sleep")

    _observe("disconnect", "DELETE", started)
    return {"message": "Eight Sleep disconnected successfully", "meta": _meta()}


@router.get("/status")
async def get_status(
    user_id: UUID = Depends(get_current_user_id),
    service: EightSleepService = Depends(get_service),
):
    started = time.monotonic()
    status = await service.get_status(user_id)
    _observe("status", "GET", started)
    return {**status.model_dump(mode="json"), "meta": _meta()}


@router.patch("/settings")
async def update_settings(
    body: SettingsBody,
    user_id: UUID = Depends(get_current_user_id),
    service: EightSleepService = Depends(get_service),
):
    started = time.monotonic()
    _validate_schedule(body.sync_time, body.sync_timezone)

    result = await service.update_settings(
        user_id,
        UpdateSettingsRequest(
            sync_enabled=body.sync_enabled,
            sync_time=body.sync_time,
            sync_timezone=body.sync_timezone,
        ),
    )
    if not result.success:
        raise IntegrationError(result.error or "Failed to update settings")

    _observe("settings", "PATCH", started)
    return {"message": "Settings updated successfully", "meta": _meta()}


@router.get("/timezones")
async def get_timezones(user_id: UUID = Depends(get_current_user_id)):
    return {"timezones": list(COMMON_TIMEZONES)}


# --- Sync ---


@router.post("/sync")
async def sync(
    body: SyncRequest | None = None,
    user_id: UUID = Depends(get_current_user_id),
    service: EightSleepService = Depends(get_service),
):
    """Run a sync now. Defaults to the last 2 nights, or 30 with `initial`."""
    started = time.monotonic()
    body = body or SyncRequest()
    if body.from_date and body.to_date and body.from_date > body.to_date:
        raise InvalidDateRangeError(str(body.from_date), str(body.to_date))

    result = await service.sync(
        user_id, from_date=body.from_date, to_date=body.to_date, initial_sync=body.initial
    )
    if not result.success:
        raise IntegrationError(result.error or "Failed to sync data")

    _observe("sync", "POST", started)
    return {
        "message": "Sync completed successfully",
        "sessions_synced": result.sessions_synced,
        "latest_date": result.latest_date.isoformat() if result.latest_date else None,
        "meta": _meta(),
    }


# --- Sleep data ---


@router.get("/sessions")
async def list_sessions(
    user_id: UUID = Depends(get_current_user_id),
    repository: EightSleepRepository = Depends(get_repository),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    limit: int = Query(30, ge=1, le=366),
    offset: int = Query(0, ge=0),
):
    started = time.monotonic()
    if from_date and to_date and from_date > to_date:
        raise InvalidDateRangeError(str(from_date), str(to_date))

    rows, total = await repository.list_sessions(user_id, from_date, to_date, limit, offset)
    _observe("sessions", "GET", started)
    return {"sessions": [_session_to_dict(r) for r in rows], "total": total, "meta": _meta()}


@router.get("/sessions/{session_id}")
async def get_session_detail(
    session_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    repository: EightSleepRepository = Depends(get_repository),
):
    started = time.monotonic()
    row = await repository.get_session(user_id, session_id)
    if row is None:
        raise NotFoundError("Session not found")

    _observe("session", "GET", started)
    return _session_to_dict(row, include_raw=True)


@router.get("/analysis")
async def get_analysis(
    user_id: UUID = Depends(get_current_user_id),
    repository: EightSleepRepository = Depends(get_repository),
    days: int = Query(30, ge=1, le=3650),
):
    started = time.monotonic()
    analysis = await repository.get_analysis(user_id, days, datetime.now(UTC).date())
    _observe("analysis", "GET", started)
    return analysis


@router.get("/trends")
async def get_trends(
    user_id: UUID = Depends(get_current_user_id),
    repository: EightSleepRepository = Depends(get_repository),
    days: int = Query(30, ge=1, le=3650),
):
    started = time.monotonic()
    trends = await repository.get_trends(user_id, days, datetime.now(UTC).date())
    _observe("trends", "GET", started)
    return {"trends": trends}


# --- Correlations ---


@router.get("/correlations")
async def get_correlations(
    user_id: UUID = Depends(get_current_user_id),
    correlations: SleepCorrelationService = Depends(get_correlation_service),
    days: int = Query(settings.correlation_days, ge=1, le=3650),
):
    started = time.monotonic()
    results = await correlations.supplement_correlations(user_id, days)
    _observe("correlations", "GET", started)
    return {"correlations": results}


@router.get("/correlations/summary")
async def get_correlation_summary(
    user_id: UUID = Depends(get_current_user_id),
    correlations: SleepCorrelationService = Depends(get_correlation_service),
    days: int = Query(settings.correlation_days, ge=1, le=3650),
):
    started = time.monotonic()
    summary = await correlations.summary(user_id, days)
    _observe("correlations_summary", "GET", started)
    return summary


@router.get("/correlations/factors")
async def get_factor_correlations(
    user_id: UUID = Depends(get_current_user_id),
    correlations: SleepCorrelationService = Depends(get_correlation_service),
    days: int = Query(settings.correlation_days, ge=1, le=3650),
):
    started = time.monotonic()
    factors = await correlations.daily_factor_correlations(user_id, days)
    _observe("correlations_factors", "GET", started)
    return {"factors": factors}


@router.post("/correlations/build")
async def build_correlations(
    user_id: UUID = Depends(get_current_user_id),
    correlations: SleepCorrelationService = Depends(get_correlation_service),
    days: int = Query(settings.correlation_days, ge=1, le=3650),
):
    started = time.monotonic()
    created = await correlations.build_correlations(user_id, days)
    _observe("correlations_build", "POST", started)
    return {"message": "Correlations built", "correlations_created": created}
