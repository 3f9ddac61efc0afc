"""Tests for the Eight Sleep HTTP client against httpx.MockTransport."""

import json
from datetime import date

import httpx
import pytest

from eight_sleep.client import (
    LOGIN_FAILED_MESSAGE,
    RATE_LIMITED_MESSAGE,
    UNAUTHORIZED_MESSAGE,
    EightSleepClient,
    determine_bed_side,
    device_id_of,
)
from eight_sleep.domain.models import BedSide

BASE_URL = "https://client-api.test/v1"

LOGIN_BODY = {
    "session": {
        "userId": "es-user-1",
        "token": "session-token-abc",
        "expirationDate": "2024-03-16T12:00:00Z",
    }
}


class Recorder:
    """Serves queued responses and records requests and sleeps."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []
        self.sleeps: list[float] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(
            response.status_code, headers=response.headers, content=response.content
        )

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


@pytest.fixture
async def make_client():
    clients: list[httpx.AsyncClient] = []

    def _make(recorder: Recorder, **kwargs) -> EightSleepClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(recorder.handler))
        clients.append(http)
        options = {
            "base_url": BASE_URL,
            "user_agent": "test-agent",
            "request_delay": 1.0,
            "retry_delays": (1.0, 2.0, 4.0),
            "sleep": recorder.sleep,
            **kwargs,
        }
        return EightSleepClient(http, **options)

    yield _make
    for http in clients:
        await http.aclose()


class TestLogin:
    async def test_success_returns_session(self, make_client):
        recorder = Recorder(httpx.Response(200, json=LOGIN_BODY))
        client = make_client(recorder)

        result = await client.login("sleeper@example.com", "hunter2")

        assert result.success is True
        assert result.data.user_id == "es-user-1"
        assert result.data.token == "session-token-abc"
        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/login"
        assert json.loads(request.content) == {
            "email": "sleeper@example.com",
            "password": "hunter2",
        }
        assert request.headers["user-agent"] == "test-agent"
        # Login is not subject to the pre-request delay
        assert recorder.sleeps == []

    async def test_unauthorized(self, make_client):
        recorder = Recorder(httpx.Response(401, json={"error": "bad"}))
        result = await make_client(recorder).login("a@b.c", "wrong")

        assert result.success is False
        assert result.error == UNAUTHORIZED_MESSAGE
        assert result.error_kind == "auth"
        assert len(recorder.requests) == 1

    async def test_body_without_session(self, make_client):
        recorder = Recorder(httpx.Response(200, json={"unexpected": True}))
        result = await make_client(recorder).login("a@b.c", "pw")

        assert result.success is False
        assert result.error == LOGIN_FAILED_MESSAGE

    async def test_invalid_utf8_body(self, make_client):
        recorder = Recorder(httpx.Response(200, content=b'{"session": "\xff\xfe"}'))
        result = await make_client(recorder).login("a@b.c", "pw")

        assert result.success is False
        assert result.error == "API error: 200 - invalid JSON body"
        assert result.error_kind == "api"

    async def test_test_connection_returns_user_id(self, make_client):
        recorder = Recorder(httpx.Response(200, json=LOGIN_BODY))
        result = await make_client(recorder).test_connection("a@b.c", "pw")

        assert result.success is True
        assert result.data == "es-user-1"


class TestRetryPolicy:
    async def test_rate_limit_retried_on_schedule(self, make_client):
        recorder = Recorder(
            httpx.Response(429),
            httpx.Response(429),
            httpx.Response(200, json=LOGIN_BODY),
        )
        result = await make_client(recorder).login("a@b.c", "pw")

        assert result.success is True
        assert len(recorder.requests) == 3
        assert recorder.sleeps == [1.0, 2.0]

    async def test_rate_limit_exhausted(self, make_client):
        recorder = Recorder(httpx.Response(429))
        result = await make_client(recorder).login("a@b.c", "pw")

        assert result.success is False
        assert result.error == RATE_LIMITED_MESSAGE
        assert result.status_code == 429
        assert len(recorder.requests) == 4
        assert recorder.sleeps == [1.0, 2.0, 4.0]

    async def test_server_error_not_retried(self, make_client):
        recorder = Recorder(httpx.Response(500, text="boom"))
        result = await make_client(recorder).login("a@b.c", "pw")

        assert result.success is False
        assert result.error == "API error: 500 - boom"
        assert result.error_kind == "api"
        assert len(recorder.requests) == 1

    async def test_network_error_surfaces_after_retries(self, make_client):
        recorder = Recorder(httpx.ConnectError("connection refused"))
        result = await make_client(recorder, retry_delays=(0.5,)).login("a@b.c", "pw")

        assert result.success is False
        assert result.error_kind == "network"
        assert result.error.startswith("Network error:")
        assert len(recorder.requests) == 2
        assert recorder.sleeps == [0.5]

    async def test_undecodable_body_not_retried(self, make_client):
        recorder = Recorder(httpx.DecodingError("bad gzip"))
        result = await make_client(recorder).login("a@b.c", "pw")

        assert result.success is False
        assert result.error_kind == "api"
        assert result.error == "API error: bad gzip"
        assert len(recorder.requests) == 1
        assert recorder.sleeps == []

    async def test_redirect_loop_is_api_error(self, make_client):
        recorder = Recorder(httpx.TooManyRedirects("Exceeded maximum allowed redirects."))
        result = await make_client(recorder).get_user("es-user-1", "tok")

        assert result.success is False
        assert result.error_kind == "api"
        assert len(recorder.requests) == 1


class TestAuthenticatedCalls:
    async def test_intervals_request(self, make_client):
        recorder = Recorder(
            httpx.Response(200, json={"intervals": [{"id": "i1"}, {"id": "i2"}]})
        )
        client = make_client(recorder)

        result = await client.get_intervals(
            "es-user-1", "tok", date(2024, 3, 13), date(2024, 3, 15)
        )

        assert result.success is True
        assert [i["id"] for i in result.data] == ["i1", "i2"]
        request = recorder.requests[0]
        assert request.url.path == "/v1/users/es-user-1/intervals"
        assert request.url.params["from"] == "2024-03-13"
        assert request.url.params["to"] == "2024-03-15"
        assert request.headers["session-token"] == "tok"
        assert request.headers["user-id"] == "es-user-1"
        # Fixed delay before every non-login call
        assert recorder.sleeps == [1.0]

    async def test_intervals_missing_key_is_empty(self, make_client):
        recorder = Recorder(httpx.Response(200, json={}))
        result = await make_client(recorder).get_intervals(
            "u", "t", date(2024, 3, 13), date(2024, 3, 15)
        )
        assert result.success is True
        assert result.data == []

    async def test_devices_nested_under_result(self, make_client):
        recorder = Recorder(
            httpx.Response(200, json={"result": {"devices": [{"id": "dev-1"}]}})
        )
        result = await make_client(recorder).get_devices("u", "t")
        assert result.data == [{"id": "dev-1"}]

    async def test_expired_session(self, make_client):
        recorder = Recorder(httpx.Response(401))
        result = await make_client(recorder).get_user("u", "expired")

        assert result.success is False
        assert result.error_kind == "auth"


class TestBedSide:
    def test_left(self):
        assert determine_bed_side([{"leftUserId": "u1", "rightUserId": "u2"}], "u1") == BedSide.LEFT

    def test_right(self):
        assert determine_bed_side([{"leftUserId": "u2", "rightUserId": "u1"}], "u1") == BedSide.RIGHT

    def test_both_sides_is_solo(self):
        assert determine_bed_side([{"leftUserId": "u1", "rightUserId": "u1"}], "u1") == BedSide.SOLO

    def test_owner_of_unassigned_device_is_solo(self):
        assert determine_bed_side([{"ownerId": "u1"}], "u1") == BedSide.SOLO

    def test_unknown(self):
        assert determine_bed_side([{"leftUserId": "x", "rightUserId": "y"}], "u1") is None
        assert determine_bed_side([], "u1") is None
        assert determine_bed_side(None, "u1") is None

    def test_only_first_device_considered(self):
        devices = [{"leftUserId": "x"}, {"leftUserId": "u1"}]
        assert determine_bed_side(devices, "u1") is None

    def test_device_id(self):
        assert device_id_of({"id": "dev-1"}) == "dev-1"
        assert device_id_of({"deviceId": 42}) == "42"
        assert device_id_of("dev-2") == "dev-2"
        assert device_id_of(None) is None
