"""Eight Sleep HTTP client.

Request policy:
- Every call except login waits `request_delay` seconds first (fixed-rate limiting)
- 429 and transport errors are retried on the `retry_delays` schedule, then surfaced
- 401 is returned immediately; the caller decides whether to re-authenticate
- Any other non-2xx is returned as an API error with status and body text
- Undecodable bodies and other HTTP errors are returned as API errors without retry

Expected failures never raise: every public method returns an ApiResult.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from eight_sleep.domain.models import BedSide, LoginSession
from shared.config import settings
from shared.metrics import eight_sleep_api_duration_seconds, eight_sleep_api_requests_total

logger = structlog.get_logger()

RATE_LIMITED_MESSAGE = "Rate limited by Eight Sleep API. Please try again later."
UNAUTHORIZED_MESSAGE = "Invalid credentials or session expired"
LOGIN_FAILED_MESSAGE = "Failed to authenticate with Eight Sleep"


@dataclass
class ApiResult:
    """Uniform outcome of one Eight Sleep call.

    error_kind is one of "auth", "rate_limit", "api", "network" on failure.
    """

    success: bool
    data: Any = None
    error: str | None = None
    status_code: int | None = None
    error_kind: str | None = None


class _RateLimited(Exception):
    def __init__(self, result: ApiResult):
        self.result = result
        super().__init__(result.error)


def _wait_from_schedule(delays: Sequence[float]) -> Callable[[RetryCallState], float]:
    def wait(retry_state: RetryCallState) -> float:
        if not delays:
            return 0.0
        index = min(retry_state.attempt_number - 1, len(delays) - 1)
        return delays[index]

    return wait


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "eight_sleep_retrying",
        attempt=retry_state.attempt_number,
        delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        reason="rate_limited" if isinstance(exc, _RateLimited) else "network_error",
    )


class EightSleepClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        base_url: str = settings.eight_sleep_base_url,
        user_agent: str = settings.eight_sleep_user_agent,
        request_delay: float = settings.request_delay_seconds,
        retry_delays: Sequence[float] = tuple(settings.retry_delays_seconds),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._request_delay = request_delay
        self._retry_delays = tuple(retry_delays)
        self._sleep = sleep

    def _headers(self, user_id: str | None = None, token: str | None = None) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": self._user_agent}
        if token is not None:
            headers["session-token"] = token
        if user_id is not None:
            headers["user-id"] = user_id
        return headers

    async def _send(self, method: str, url: str, **kwargs) -> ApiResult:
        """One HTTP exchange. Raises _RateLimited / httpx.TransportError for retryable outcomes."""
        response = await self._http.request(method, url, **kwargs)

        if response.status_code == 429:
            raise _RateLimited(
                ApiResult(
                    success=False,
                    error=RATE_LIMITED_MESSAGE,
                    status_code=429,
                    error_kind="rate_limit",
                )
            )
        if response.status_code == 401:
            return ApiResult(
                success=False, error=UNAUTHORIZED_MESSAGE, status_code=401, error_kind="auth"
            )
        if not response.is_success:
            return ApiResult(
                success=False,
                error=f"API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
                error_kind="api",
            )

        try:
            data = response.json()
        except ValueError:
            return ApiResult(
                success=False,
                error=f"API error: {response.status_code} - invalid JSON body",
                status_code=response.status_code,
                error_kind="api",
            )
        return ApiResult(success=True, data=data, status_code=response.status_code)

    async def _request(self, endpoint: str, method: str, path: str, **kwargs) -> ApiResult:
        url = f"{self._base_url}{path}"
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((_RateLimited, httpx.TransportError)),
            wait=_wait_from_schedule(self._retry_delays),
            stop=stop_after_attempt(len(self._retry_delays) + 1),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

        start = time.monotonic()
        try:
            async for attempt in retrying:
                with attempt:
                    result = await self._send(method, url, **kwargs)
        except _RateLimited as exc:
            result = exc.result
        except httpx.TransportError as exc:
            result = ApiResult(success=False, error=f"Network error: {exc}", error_kind="network")
        except httpx.HTTPError as exc:
            # Decoding failures and redirect loops are not worth retrying
            result = ApiResult(success=False, error=f"API error: {exc}", error_kind="api")
        finally:
            eight_sleep_api_duration_seconds.labels(endpoint=endpoint).observe(
                time.monotonic() - start
            )

        eight_sleep_api_requests_total.labels(
            endpoint=endpoint, outcome="success" if result.success else result.error_kind
        ).inc()
        if not result.success:
            logger.warning(
                "eight_sleep_request_failed",
                endpoint=endpoint,
                status_code=result.status_code,
                error_kind=result.error_kind,
            )
        return result

    async def _authenticated_get(
        self, endpoint: str, path: str, user_id: str, token: str, **kwargs
    ) -> ApiResult:
        await self._sleep(self._request_delay)
        return await self._request(
            endpoint, "GET", path, headers=self._headers(user_id, token), **kwargs
        )

    async def login(self, email: str, password: str) -> ApiResult:
        """POST /login. On success, data is a LoginSession."""
        result = await self._request(
            "login",
            "POST",
            "/login",
            headers=self._headers(),
            json={"email": email, "password": password},
        )
        if not result.success:
            return result

        try:
            result.data = LoginSession.from_response(result.data)
        except (KeyError, TypeError, AttributeError, ValueError):
            return ApiResult(
                success=False,
                error=LOGIN_FAILED_MESSAGE,
                status_code=result.status_code,
                error_kind="api",
            )
        return result

    async def get_user(self, user_id: str, token: str) -> ApiResult:
        return await self._authenticated_get("user", f"/users/{user_id}", user_id, token)

    async def get_devices(self, user_id: str, token: str) -> ApiResult:
        """GET /users/{id}/devices. On success, data is the device list."""
        result = await self._authenticated_get(
            "devices", f"/users/{user_id}/devices", user_id, token
        )
        if result.success:
            body = result.data if isinstance(result.data, dict) else {}
            devices = body.get("devices")
            if devices is None and isinstance(body.get("result"), dict):
                devices = body["result"].get("devices")
            result.data = list(devices or [])
        return result

    async def get_intervals(
        self, user_id: str, token: str, from_date: date, to_date: date
    ) -> ApiResult:
        """GET /users/{id}/intervals?from=&to=. On success, data is the interval list."""
        result = await self._authenticated_get(
            "intervals",
            f"/users/{user_id}/intervals",
            user_id,
            token,
            params={"from": from_date.isoformat(), "to": to_date.isoformat()},
        )
        if result.success:
            body = result.data if isinstance(result.data, dict) else {}
            result.data = list(body.get("intervals") or [])
        return result

    async def test_connection(self, email: str, password: str) -> ApiResult:
        """Login-only credential check. On success, data is the Eight Sleep user id."""
        result = await self.login(email, password)
        if not result.success:
            return ApiResult(
                success=False,
                error=result.error or LOGIN_FAILED_MESSAGE,
                status_code=result.status_code,
                error_kind=result.error_kind,
            )
        return ApiResult(success=True, data=result.data.user_id, status_code=result.status_code)


def device_id_of(device: Any) -> str | None:
    if isinstance(device, dict):
        value = device.get("id") or device.get("deviceId")
        return str(value) if value is not None else None
    if isinstance(device, str):
        return device
    return None


def determine_bed_side(devices: Sequence[Any] | None, user_id: str) -> BedSide | None:
    """Which side of the first device belongs to `user_id`.

    Both sides assigned to the user, or an unassigned device they own, is SOLO.
    Only the first device is considered.
    """
    if not devices:
        return None

    device = devices[0]
    if not isinstance(device, dict):
        return None

    left = device.get("leftUserId")
    right = device.get("rightUserId")

    if left == user_id and right == user_id:
        return BedSide.SOLO
    if left == user_id:
        return BedSide.LEFT
    if right == user_id:
        return BedSide.RIGHT
    if device.get("ownerId") == user_id:
        return BedSide.SOLO
    return None
