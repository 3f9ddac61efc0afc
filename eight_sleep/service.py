"""Eight Sleep sync orchestrator.

Owns the connect lifecycle, session-token validity, the fetch -> parse ->
upsert loop, and the integration's run status:

    never -> syncing -> success | failed   (again on every sync)

consecutive_failures resets only on success. Nights written before a failure
stay written; a run never rolls back.

All collaborators (store, client, cipher, clock) are injected.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from sqlalchemy.exc import SQLAlchemyError

from eight_sleep.client import EightSleepClient, determine_bed_side, device_id_of
from eight_sleep.domain.models import (
    ConnectRequest,
    ConnectResult,
    Integration,
    IntegrationStatus,
    LoginSession,
    OperationResult,
    SyncResult,
    SyncStatus,
    UpdateSettingsRequest,
)
from eight_sleep.domain.validation import parse_sync_time
from eight_sleep.parser import parse_interval
from eight_sleep.store import EightSleepStore
from shared.config import Settings
from shared.config import settings as default_settings
from shared.crypto import Cipher
from shared.exceptions import EncryptionError
from shared.metrics import sleep_sessions_upserted_total, sync_runs_total

logger = structlog.get_logger()

NOT_CONNECTED = "Eight Sleep not connected"
AUTH_FAILED = "Failed to authenticate with Eight Sleep"
STORE_FAILED = "Failed to store integration. Please try again."
DISCONNECT_FAILED = "Failed to disconnect. Please try again."
SETTINGS_FAILED = "Failed to update settings"
FETCH_FAILED = "Failed to fetch sleep data"


class SyncFailed(Exception):
    """Aborts a sync run; the message becomes last_error_message."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


class EightSleepService:
    def __init__(
        self,
        store: EightSleepStore,
        client: EightSleepClient,
        cipher: Cipher,
        *,
        settings: Settings = default_settings,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.client = client
        self.cipher = cipher
        self.settings = settings
        self.clock = clock

    # --- Connect / disconnect ---

    async def connect(self, user_id: UUID, request: ConnectRequest) -> ConnectResult:
        log = logger.bind(user_id=str(user_id))

        login = await self.client.login(request.email, request.password)
        if not login.success:
            log.info("eight_sleep_connect_rejected", error_kind=login.error_kind)
            return ConnectResult(success=False, error=login.error or AUTH_FAILED)
        session: LoginSession = login.data

        device_id = None
        side = None
        devices = await self.client.get_devices(session.user_id, session.token)
        if devices.success and devices.data:
            device_id = device_id_of(devices.data[0])
            side = determine_bed_side(devices.data, session.user_id)
        elif not devices.success:
            log.warning("eight_sleep_device_lookup_failed", error_kind=devices.error_kind)

        sync_time = parse_sync_time(request.sync_time or "") or parse_sync_time(
            self.settings.default_sync_time
        )
        sync_timezone = request.sync_timezone or self.settings.default_sync_timezone

        try:
            integration = await self.store.save_integration(
                user_id,
                {
                    "email_encrypted": self.cipher.encrypt(request.email),
                    "password_encrypted": self.cipher.encrypt(request.password),
                    "eight_sleep_user_id": session.user_id,
                    "session_token_encrypted": self.cipher.encrypt(session.token),
                    "token_expires_at": session.expiration_date,
                    "device_id": device_id,
                    "side": side.value if side else None,
                    "sync_enabled": True,
                    "sync_time": sync_time,
                    "sync_timezone": sync_timezone,
                    "is_active": True,
                    "last_sync_status": SyncStatus.NEVER.value,
                    "consecutive_failures": 0,
                    "last_error_message": None,
                },
            )
        except (SQLAlchemyError, EncryptionError):
            log.exception("eight_sleep_connect_store_failed")
            return ConnectResult(success=False, error=STORE_FAILED)

        try:
            await self.store.upsert_schedule(
                user_id, sync_time=sync_time, timezone=sync_timezone, is_enabled=True
            )
        except SQLAlchemyError:
            log.exception("sync_schedule_upsert_failed")

        log.info("eight_sleep_connected", integration_id=str(integration.id), side=side)
        return ConnectResult(
            success=True,
            integration_id=integration.id,
            eight_sleep_user_id=session.user_id,
            device_id=device_id,
            side=side,
        )

    async def disconnect(self, user_id: UUID) -> OperationResult:
        try:
            await self.store.delete_integration(user_id)
        except SQLAlchemyError:
            logger.exception("eight_sleep_disconnect_failed", user_id=str(user_id))
            return OperationResult(success=False, error=DISCONNECT_FAILED)

        try:
            await self.store.delete_schedule(user_id)
        except SQLAlchemyError:
            logger.exception("sync_schedule_delete_failed", user_id=str(user_id))

        logger.info("eight_sleep_disconnected", user_id=str(user_id))
        return OperationResult(success=True)

    # --- Status / settings ---

    async def get_status(self, user_id: UUID) -> IntegrationStatus:
        integration = await self.store.get_integration(user_id)
        if integration is None:
            return IntegrationStatus(connected=False, sync_enabled=False, consecutive_failures=0)

        return IntegrationStatus(
            connected=True,
            integration_id=integration.id,
            last_sync_at=integration.last_sync_at,
            last_sync_status=integration.last_sync_status,
            sync_enabled=integration.sync_enabled,
            sync_time=integration.sync_time,
            sync_timezone=integration.sync_timezone,
            consecutive_failures=integration.consecutive_failures,
            error_message=integration.last_error_message,
            device_id=integration.device_id,
            side=integration.side,
        )

    async def update_settings(
        self, user_id: UUID, request: UpdateSettingsRequest
    ) -> OperationResult:
        """Apply only the supplied fields. Inputs are validated by the caller."""
        updates: dict[str, Any] = {}
        if request.sync_enabled is not None:
            updates["sync_enabled"] = request.sync_enabled
        if request.sync_time:
            updates["sync_time"] = parse_sync_time(request.sync_time)
        if request.sync_timezone:
            updates["sync_timezone"] = request.sync_timezone

        if not updates:
            return OperationResult(success=True)

        integration = await self.store.get_integration(user_id)
        if integration is None:
            return OperationResult(success=False, error=NOT_CONNECTED)

        try:
            await self.store.update_integration(integration.id, updates)
        except SQLAlchemyError:
            logger.exception("eight_sleep_settings_update_failed", user_id=str(user_id))
            return OperationResult(success=False, error=SETTINGS_FAILED)

        schedule_updates = {
            "is_enabled": updates.get("sync_enabled"),
            "sync_time": updates.get("sync_time"),
            "timezone": updates.get("sync_timezone"),
        }
        try:
            await self.store.update_schedule(
                user_id, {k: v for k, v in schedule_updates.items() if v is not None}
            )
        except SQLAlchemyError:
            logger.exception("sync_schedule_update_failed", user_id=str(user_id))

        return OperationResult(success=True)

    # --- Token handling ---

    async def _get_valid_token(self, integration: Integration) -> tuple[str, str] | None:
        """(token, eight_sleep_user_id) usable right now, re-authenticating if needed.

        The stored token is reused only when it outlives now + buffer. A token
        that fails to decrypt counts as unusable. None when re-auth fails.
        """
        buffer = timedelta(minutes=self.settings.token_refresh_buffer_minutes)
        if (
            integration.session_token_encrypted
            and integration.token_expires_at
            and integration.eight_sleep_user_id
            and integration.token_expires_at > self.clock() + buffer
        ):
            try:
                token = self.cipher.decrypt(integration.session_token_encrypted)
                return token, integration.eight_sleep_user_id
            except EncryptionError:
                logger.warning("stored_token_undecryptable", integration_id=str(integration.id))

        try:
            email = self.cipher.decrypt(integration.email_encrypted)
            password = self.cipher.decrypt(integration.password_encrypted)
        except EncryptionError:
            logger.exception("stored_credentials_undecryptable", integration_id=str(integration.id))
            return None

        login = await self.client.login(email, password)
        if not login.success:
            logger.warning(
                "eight_sleep_reauth_failed",
                integration_id=str(integration.id),
                error_kind=login.error_kind,
            )
            return None
        session: LoginSession = login.data

        await self.store.update_integration(
            integration.id,
            {
                "session_token_encrypted": self.cipher.encrypt(session.token),
                "token_expires_at": session.expiration_date,
                "eight_sleep_user_id": session.user_id,
            },
        )
        logger.info("eight_sleep_token_refreshed", integration_id=str(integration.id))
        return session.token, session.user_id

    # --- Sync ---

    def _window(
        self, from_date: date | None, to_date: date | None, initial_sync: bool
    ) -> tuple[date, date]:
        today = self.clock().astimezone(UTC).date()
        end = to_date or today
        if from_date is None:
            days = self.settings.initial_sync_days if initial_sync else self.settings.regular_sync_days
            from_date = today - timedelta(days=days)
        return from_date, end

    @staticmethod
    def _zone(name: str) -> ZoneInfo | None:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            return None

    async def sync(
        self,
        user_id: UUID,
        from_date: date | None = None,
        to_date: date | None = None,
        initial_sync: bool = False,
    ) -> SyncResult:
        integration = await self.store.get_integration(user_id)
        if integration is None:
            sync_runs_total.labels(status="not_connected").inc()
            return SyncResult(success=False, sessions_synced=0, error=NOT_CONNECTED)

        log = logger.bind(user_id=str(user_id), integration_id=str(integration.id))
        await self.store.update_integration(
            integration.id, {"last_sync_status": SyncStatus.SYNCING.value}
        )

        try:
            synced, latest = await self._run(integration, from_date, to_date, initial_sync, log)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            if isinstance(exc, SyncFailed):
                log.warning("sync_failed", error=message)
            else:
                log.exception("sync_failed", error=message)
            sync_runs_total.labels(status="failed").inc()
            await self._finish(
                integration,
                {
                    "last_sync_status": SyncStatus.FAILED.value,
                    "consecutive_failures": integration.consecutive_failures + 1,
                    "last_error_message": message,
                },
            )
            return SyncResult(success=False, sessions_synced=0, error=message)

        sync_runs_total.labels(status="success").inc()
        await self._finish(
            integration,
            {
                "last_sync_at": self.clock(),
                "last_sync_status": SyncStatus.SUCCESS.value,
                "consecutive_failures": 0,
                "last_error_message": None,
            },
        )
        log.info("sync_completed", sessions_synced=synced, latest_date=latest)
        return SyncResult(success=True, sessions_synced=synced, latest_date=latest)

    async def _finish(self, integration: Integration, values: dict[str, Any]) -> None:
        try:
            await self.store.update_integration(integration.id, values)
        except SQLAlchemyError:
            logger.exception(
                "sync_status_update_failed",
                integration_id=str(integration.id),
                status=values["last_sync_status"],
            )
        try:
            await self.store.mark_schedule_run(integration.user_id, self.clock())
        except SQLAlchemyError:
            logger.exception("sync_schedule_mark_failed", integration_id=str(integration.id))

    async def _run(
        self,
        integration: Integration,
        from_date: date | None,
        to_date: date | None,
        initial_sync: bool,
        log: Any,
    ) -> tuple[int, date | None]:
        auth = await self._get_valid_token(integration)
        if auth is None:
            raise SyncFailed(AUTH_FAILED)
        token, eight_sleep_user_id = auth

        start, end = self._window(from_date, to_date, initial_sync)
        log.info("sync_started", from_date=start.isoformat(), to_date=end.isoformat())

        fetched = await self.client.get_intervals(eight_sleep_user_id, token, start, end)
        if not fetched.success:
            raise SyncFailed(fetched.error or FETCH_FAILED)

        tz = self._zone(integration.sync_timezone) or UTC
        synced = 0
        latest: date | None = None

        for interval in fetched.data:
            if not isinstance(interval, dict) or interval.get("incomplete"):
                sleep_sessions_upserted_total.labels(status="skipped").inc()
                continue

            metrics = parse_interval(interval, tz)
            if metrics.date is None:
                log.warning("interval_skipped", reason="missing_timestamp", interval_id=interval.get("id"))
                sleep_sessions_upserted_total.labels(status="skipped").inc()
                continue

            record = {
                **metrics.model_dump(),
                "user_id": integration.user_id,
                "integration_id": integration.id,
                "eight_sleep_interval_id": (
                    str(interval["id"]) if interval.get("id") is not None else None
                ),
                "raw_data": interval,
                "synced_from_api": True,
            }
            try:
                await self.store.upsert_sleep_session(record)
            except SQLAlchemyError:
                log.exception("sleep_session_upsert_failed", night=metrics.date.isoformat())
                sleep_sessions_upserted_total.labels(status="failed").inc()
                continue

            sleep_sessions_upserted_total.labels(status="upserted").inc()
            synced += 1
            if latest is None or metrics.date > latest:
                latest = metrics.date

        return synced, latest
