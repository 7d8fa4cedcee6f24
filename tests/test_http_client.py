import asyncio

import httpx
import pytest

from scriptstream.client.http_client import HttpClient
from scriptstream.client.token_store import InMemoryTokenStore
from scriptstream.shared.errors import (
    SERVER_ERROR_MESSAGE,
    ApiError,
    NetworkError,
    RequestTimeoutError,
    ResponseParseError,
)
from scriptstream.shared.models import RetryPolicy, TokenPair

BASE_URL = "http://api.test"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _client(handler, pair=TokenPair(access_token="old-access", refresh_token="old-refresh"), **kwargs):
    store = InMemoryTokenStore(pair)
    sleep = RecordingSleep()
    kwargs.setdefault("retry_policy", RetryPolicy())
    client = HttpClient(
        store,
        base_url=BASE_URL,
        timeout_s=kwargs.pop("timeout_s", 5),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
        **kwargs,
    )
    return store, client, sleep


def _refresh_ok_handler(counts):
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            counts["refresh"] += 1
            await asyncio.sleep(0.05)
            return httpx.Response(200, json={"access_token": "new-access", "refresh_token": "new-refresh"})
        counts["requests"] += 1
        if request.headers.get("authorization") == "Bearer new-access":
            return httpx.Response(200, json={"path": request.url.path})
        return httpx.Response(401, json={"statusCode": 401, "message": "jwt expired", "error": "Unauthorized"})
    return handler


@pytest.mark.asyncio
async def test_concurrent_401s_trigger_exactly_one_refresh():
    counts = {"refresh": 0, "requests": 0}
    store, client, _ = _client(_refresh_ok_handler(counts))

    async with client:
        results = await asyncio.gather(*(client.get(f"/items/{i}") for i in range(5)))

    assert results == [{"path": f"/items/{i}"} for i in range(5)]
    assert counts["refresh"] == 1
    # five originals plus five replays
    assert counts["requests"] == 10
    assert store.get() == TokenPair(access_token="new-access", refresh_token="new-refresh")


@pytest.mark.asyncio
async def test_rejected_refresh_fails_every_pending_request_and_clears_tokens():
    unauthorized = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            await asyncio.sleep(0.05)
            return httpx.Response(401, json={"statusCode": 401, "message": "Invalid refresh token"})
        return httpx.Response(401, json={"statusCode": 401, "message": "jwt expired", "error": "Unauthorized"})

    store, client, _ = _client(handler, on_unauthorized=unauthorized.append)

    async with client:
        results = await asyncio.gather(*(client.get("/profile") for _ in range(3)), return_exceptions=True)

    assert all(isinstance(r, ApiError) and r.status_code == 401 for r in results)
    assert store.get() is None
    assert client.refresher.refresh_count == 1
    assert len(unauthorized) == 3
    assert unauthorized[0].user_message == "Your session has expired. Please log in again."


@pytest.mark.asyncio
async def test_second_401_after_refresh_is_raised_without_looping():
    counts = {"refresh": 0}
    called = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            counts["refresh"] += 1
            return httpx.Response(200, json={"access_token": "new-access"})
        return httpx.Response(401, json={"statusCode": 401, "message": "still no"})

    _, client, _ = _client(handler, on_unauthorized=called.append)

    async with client:
        with pytest.raises(ApiError) as exc_info:
            await client.get("/profile")

    assert exc_info.value.status_code == 401
    assert counts["refresh"] == 1
    assert called == []


@pytest.mark.asyncio
async def test_401_from_refresh_endpoint_itself_is_not_refreshed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"statusCode": 401, "message": "nope"})

    _, client, _ = _client(handler)

    async with client:
        with pytest.raises(ApiError):
            await client.post("/auth/refresh", json={"refresh_token": "x"})

    assert client.refresher.refresh_count == 0
    assert client.attempts_made == 1


@pytest.mark.asyncio
async def test_replay_after_refresh_is_sent_exactly_once():
    counts = {"refresh": 0, "replays": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            counts["refresh"] += 1
            return httpx.Response(200, json={"access_token": "new-access"})
        if request.headers.get("authorization") == "Bearer new-access":
            counts["replays"] += 1
            return httpx.Response(500, json={"statusCode": 500, "message": "boom"})
        return httpx.Response(401, json={"statusCode": 401, "message": "jwt expired"})

    _, client, sleep = _client(handler)

    async with client:
        with pytest.raises(ApiError) as exc_info:
            await client.get("/profile")

    assert exc_info.value.status_code == 500
    assert counts == {"refresh": 1, "replays": 1}
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_malformed_refresh_body_fails_with_the_original_401():
    unauthorized = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            return httpx.Response(200, json={"access_token": 123})
        return httpx.Response(401, json={"statusCode": 401, "message": "jwt expired", "error": "Unauthorized"})

    store, client, _ = _client(handler, on_unauthorized=unauthorized.append)

    async with client:
        with pytest.raises(ApiError) as exc_info:
            await client.get("/profile")

    assert exc_info.value.status_code == 401
    assert store.get() is None
    assert len(unauthorized) == 1


@pytest.mark.asyncio
async def test_failing_unauthorized_callback_does_not_mask_the_401():
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/refresh":
            return httpx.Response(401, json={"statusCode": 401, "message": "Invalid refresh token"})
        return httpx.Response(401, json={"statusCode": 401, "message": "jwt expired", "error": "Unauthorized"})

    async def on_unauthorized(error: ApiError) -> None:
        raise RuntimeError("navigation failed")

    _, client, _ = _client(handler, on_unauthorized=on_unauthorized)

    async with client:
        with pytest.raises(ApiError) as exc_info:
            await client.get("/profile")

    assert exc_info.value.status_code == 401
    assert exc_info.value.message == "jwt expired"


@pytest.mark.asyncio
async def test_server_errors_back_off_exponentially_then_succeed():
    statuses = iter([500, 500, 500, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status == 200:
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(status, json={"statusCode": status, "message": "boom"})

    _, client, sleep = _client(handler)

    async with client:
        assert await client.get("/generation") == {"ok": True}

    assert client.attempts_made == 4
    assert sleep.delays == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_the_last_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"statusCode": 503, "message": "overloaded", "error": "Service Unavailable"})

    _, client, sleep = _client(handler, retry_policy=RetryPolicy(max_retries=2, base_delay_ms=100))

    async with client:
        with pytest.raises(ApiError) as exc_info:
            await client.get("/generation")

    assert exc_info.value.status_code == 503
    assert exc_info.value.user_message == SERVER_ERROR_MESSAGE
    assert client.attempts_made == 3
    assert sleep.delays == [0.1, 0.2]


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"statusCode": 404, "message": "Generation gen_1 not found", "error": "Not Found"})

    _, client, sleep = _client(handler)

    async with client:
        with pytest.raises(ApiError) as exc_info:
            await client.get("/generation/gen_1")

    error = exc_info.value
    assert (error.status_code, error.code, error.message) == (404, "Not Found", "Generation gen_1 not found")
    assert client.attempts_made == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_validation_messages_are_joined():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"statusCode": 400, "message": ["topic is required", "platform is invalid"]})

    _, client, _ = _client(handler)

    async with client:
        with pytest.raises(ApiError) as exc_info:
            await client.post("/generation", json={})

    assert "topic is required" in exc_info.value.message
    assert "platform is invalid" in exc_info.value.message


@pytest.mark.asyncio
async def test_network_error_is_retried_then_succeeds():
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"ok": True})

    _, client, sleep = _client(handler)

    async with client:
        assert await client.get("/healthz") == {"ok": True}

    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_network_error_after_budget_is_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _, client, _ = _client(handler, retry_policy=RetryPolicy(max_retries=1))

    async with client:
        with pytest.raises(NetworkError) as exc_info:
            await client.get("/healthz")

    assert not isinstance(exc_info.value, RequestTimeoutError)
    assert client.attempts_made == 2


@pytest.mark.asyncio
async def test_slow_response_raises_timeout():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    _, client, _ = _client(handler, timeout_s=0.05, retry_policy=RetryPolicy(max_retries=0))

    async with client:
        with pytest.raises(RequestTimeoutError) as exc_info:
            await client.get("/slow")

    assert isinstance(exc_info.value, NetworkError)
    assert exc_info.value.timeout_s == 0.05


@pytest.mark.asyncio
async def test_unparsable_json_body_raises_parse_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="{truncated", headers={"content-type": "application/json"})

    _, client, _ = _client(handler)

    async with client:
        with pytest.raises(ResponseParseError):
            await client.get("/generation")


@pytest.mark.asyncio
async def test_empty_and_text_bodies():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/empty":
            return httpx.Response(204)
        return httpx.Response(200, text="pong", headers={"content-type": "text/plain"})

    _, client, _ = _client(handler)

    async with client:
        assert await client.delete("/empty") is None
        assert await client.get("/text") == "pong"


@pytest.mark.asyncio
async def test_headers_carry_current_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200, json={})

    _, client, _ = _client(handler)

    async with client:
        await client.get("/profile", headers={"X-Trace": "abc"})

    assert seen["authorization"] == "Bearer old-access"
    assert seen["accept"] == "application/json"
    assert seen["cache-control"].startswith("no-cache")
    assert seen["x-trace"] == "abc"


@pytest.mark.asyncio
async def test_no_authorization_header_without_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200, json={})

    _, client, _ = _client(handler, pair=None)

    async with client:
        await client.get("/generation/demo")

    assert "authorization" not in seen
