"""Tests for mappa._http.HttpClient — requests, retries and SSE with mocked responses."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from yarl import URL

from mappa import Telemetry
from mappa._http import HttpClient, MultipartBody, MultipartField
from mappa.errors import (
    AbortError,
    ApiError,
    AuthError,
    InsufficientCreditsError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    ValidationError,
)


def _calls(mock_api, method: str, url: str) -> list:
    return mock_api.requests.get((method, URL(url)), [])


@pytest.fixture
def http(api_key, base_url):
    client = HttpClient(api_key, base_url=base_url)
    client._backoff = AsyncMock()
    return client


def test_requires_api_key(base_url):
    with pytest.raises(ValueError):
        HttpClient("", base_url=base_url)


def test_build_url_drops_none_and_lowercases_bools(http, base_url):
    url = http.build_url("/v1/entities", {"limit": 10, "cursor": None, "hasMore": True})
    assert url == f"{base_url}/v1/entities?limit=10&hasMore=true"


@pytest.mark.asyncio
async def test_request_sends_auth_and_correlation_headers(mock_api, http, base_url, api_key):
    mock_api.get(
        f"{base_url}/v1/health/ping",
        payload={"ok": True},
        headers={"X-Request-Id": "req_server"},
    )
    try:
        resp = await http.request("GET", "/v1/health/ping", request_id="req_client")
        assert resp.data == {"ok": True}
        assert resp.status == 200
        assert resp.request_id == "req_server"

        (call,) = _calls(mock_api, "GET", f"{base_url}/v1/health/ping")
        headers = call.kwargs["headers"]
        assert headers["Mappa-Api-Key"] == api_key
        assert headers["X-Request-Id"] == "req_client"
        assert headers["User-Agent"].startswith("mappa-python/")
        assert "Idempotency-Key" not in headers
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_request_generates_request_id_and_sends_json(mock_api, http, base_url):
    mock_api.post(f"{base_url}/v1/feedback", payload={"id": "fb-1"})
    try:
        resp = await http.request(
            "POST",
            "/v1/feedback",
            json_body={"rating": "5"},
            idempotency_key="idem_abc",
        )
        assert resp.request_id.startswith("req_")

        (call,) = _calls(mock_api, "POST", f"{base_url}/v1/feedback")
        assert call.kwargs["json"] == {"rating": "5"}
        assert call.kwargs["headers"]["Content-Type"] == "application/json"
        assert call.kwargs["headers"]["Idempotency-Key"] == "idem_abc"
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_multipart_body_leaves_content_type_to_aiohttp(mock_api, http, base_url):
    mock_api.post(f"{base_url}/v1/files", payload={"mediaId": "m-1"})
    body = MultipartBody((MultipartField("file", b"abc", filename="a.wav", content_type="audio/wav"),))
    try:
        await http.request("POST", "/v1/files", form=body)
        (call,) = _calls(mock_api, "POST", f"{base_url}/v1/files")
        assert "Content-Type" not in call.kwargs["headers"]
        assert isinstance(call.kwargs["data"], aiohttp.FormData)
        assert "json" not in call.kwargs
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_plain_text_response(mock_api, http, base_url):
    mock_api.get(f"{base_url}/v1/health/ping", body="pong", content_type="text/plain")
    try:
        resp = await http.request("GET", "/v1/health/ping")
        assert resp.data == "pong"
    finally:
        await http.close()


# ── Error mapping ────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error_cls",
    [
        (401, AuthError),
        (403, AuthError),
        (404, NotFoundError),
        (409, ApiError),
        (422, ValidationError),
    ],
)
async def test_non_retryable_status_maps_to_error(mock_api, http, base_url, status, error_cls):
    mock_api.get(
        f"{base_url}/v1/jobs/job-1",
        status=status,
        payload={"error": {"code": "some_code", "message": "nope", "details": {"field": "x"}}},
        headers={"X-Request-Id": "req_err"},
    )
    try:
        with pytest.raises(error_cls) as exc_info:
            await http.request("GET", "/v1/jobs/job-1", retryable=True)
        err = exc_info.value
        assert err.status_code == status
        assert err.message == "nope"
        assert err.code == "some_code"
        assert err.details == {"field": "x"}
        assert err.request_id == "req_err"
        assert len(_calls(mock_api, "GET", f"{base_url}/v1/jobs/job-1")) == 1
        http._backoff.assert_not_awaited()
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_flat_error_envelope(mock_api, http, base_url):
    mock_api.get(
        f"{base_url}/v1/reports/r-1",
        status=404,
        payload={"error": "not_found", "message": "Report not found"},
    )
    try:
        with pytest.raises(NotFoundError) as exc_info:
            await http.request("GET", "/v1/reports/r-1")
        assert exc_info.value.code == "not_found"
        assert exc_info.value.message == "Report not found"
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_insufficient_credits(mock_api, http, base_url):
    mock_api.post(
        f"{base_url}/v1/reports/jobs",
        status=402,
        payload={
            "error": {
                "code": "insufficient_credits",
                "message": "Not enough credits",
                "details": {"required": 10, "available": 3},
            }
        },
    )
    try:
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await http.request("POST", "/v1/reports/jobs", json_body={}, retryable=True)
        assert exc_info.value.required == 10
        assert exc_info.value.available == 3
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_error_str_includes_context(mock_api, http, base_url):
    mock_api.get(
        f"{base_url}/v1/jobs/job-1",
        status=422,
        payload={"message": "bad input", "code": "invalid"},
        headers={"X-Request-Id": "req_42"},
    )
    try:
        with pytest.raises(ValidationError) as exc_info:
            await http.request("GET", "/v1/jobs/job-1")
        text = str(exc_info.value)
        assert "bad input" in text
        assert "status_code=422" in text
        assert "req_42" in text
    finally:
        await http.close()


# ── Retries ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_retries_server_error_then_succeeds(mock_api, http, base_url):
    url = f"{base_url}/v1/jobs/job-1"
    mock_api.get(url, status=503, payload={"message": "unavailable"})
    mock_api.get(url, payload={"id": "job-1", "status": "running"})
    try:
        resp = await http.request("GET", "/v1/jobs/job-1", retryable=True)
        assert resp.data["status"] == "running"
        assert len(_calls(mock_api, "GET", url)) == 2
        http._backoff.assert_awaited_once()
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_server_error_not_retried_when_not_retryable(mock_api, http, base_url):
    url = f"{base_url}/v1/jobs/job-1"
    mock_api.get(url, status=500, payload={"message": "boom"})
    try:
        with pytest.raises(ServerError):
            await http.request("GET", "/v1/jobs/job-1")
        assert len(_calls(mock_api, "GET", url)) == 1
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(mock_api, api_key, base_url):
    http = HttpClient(api_key, base_url=base_url, max_retries=2)
    http._backoff = AsyncMock()
    url = f"{base_url}/v1/jobs/job-1"
    for _ in range(3):
        mock_api.get(url, status=502, payload={"message": "bad gateway"})
    try:
        with pytest.raises(ServerError):
            await http.request("GET", "/v1/jobs/job-1", retryable=True)
        assert len(_calls(mock_api, "GET", url)) == 3
        assert http._backoff.await_count == 2
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_rate_limit_honors_retry_after(mock_api, http, base_url):
    url = f"{base_url}/v1/credits/balance"
    mock_api.get(url, status=429, payload={"message": "slow down"}, headers={"Retry-After": "5"})
    mock_api.get(url, payload={"balance": 10, "reserved": 0, "available": 10})
    try:
        resp = await http.request("GET", "/v1/credits/balance", retryable=True)
        assert resp.data["available"] == 10
        http._backoff.assert_awaited_once_with(5.0, None)
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_rate_limit_error_carries_retry_after(mock_api, http, base_url):
    mock_api.get(
        f"{base_url}/v1/credits/balance",
        status=429,
        payload={"message": "slow down"},
        headers={"Retry-After": "7"},
    )
    try:
        with pytest.raises(RateLimitError) as exc_info:
            await http.request("GET", "/v1/credits/balance")
        assert exc_info.value.retry_after == 7.0
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_network_error_is_retried(mock_api, http, base_url):
    url = f"{base_url}/v1/health/ping"
    mock_api.get(url, exception=aiohttp.ClientConnectionError("connection reset"))
    mock_api.get(url, payload={"ok": True})
    try:
        resp = await http.request("GET", "/v1/health/ping", retryable=True)
        assert resp.data == {"ok": True}
        http._backoff.assert_awaited_once()
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_network_error_surfaces_when_not_retryable(mock_api, http, base_url):
    mock_api.get(
        f"{base_url}/v1/health/ping",
        exception=aiohttp.ClientConnectionError("connection reset"),
    )
    try:
        with pytest.raises(NetworkError) as exc_info:
            await http.request("GET", "/v1/health/ping")
        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_timeout_becomes_abort_and_is_not_retried(mock_api, http, base_url):
    url = f"{base_url}/v1/health/ping"
    mock_api.get(url, exception=asyncio.TimeoutError())
    try:
        with pytest.raises(AbortError) as exc_info:
            await http.request("GET", "/v1/health/ping", retryable=True)
        assert exc_info.value.reason == "timeout"
        assert len(_calls(mock_api, "GET", url)) == 1
        http._backoff.assert_not_awaited()
    finally:
        await http.close()


# ── Cancellation ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_preset_signal_aborts_before_any_request(mock_api, http, base_url):
    signal = asyncio.Event()
    signal.set()
    try:
        with pytest.raises(AbortError):
            await http.request("GET", "/v1/health/ping", signal=signal)
        assert not mock_api.requests
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_abort_during_backoff(mock_api, api_key, base_url):
    http = HttpClient(api_key, base_url=base_url)
    url = f"{base_url}/v1/health/ping"
    mock_api.get(url, status=429, payload={"message": "slow"}, headers={"Retry-After": "30"})
    signal = asyncio.Event()
    try:
        task = asyncio.ensure_future(
            http.request("GET", "/v1/health/ping", signal=signal, retryable=True)
        )
        await asyncio.sleep(0.05)
        signal.set()
        with pytest.raises(AbortError):
            await asyncio.wait_for(task, 1.0)
        assert len(_calls(mock_api, "GET", url)) == 1
    finally:
        await http.close()


# ── Telemetry ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_telemetry_hooks(mock_api, api_key, base_url):
    on_request = MagicMock()
    on_response = MagicMock()
    on_error = MagicMock()
    http = HttpClient(
        api_key,
        base_url=base_url,
        telemetry=Telemetry(on_request=on_request, on_response=on_response, on_error=on_error),
    )
    http._backoff = AsyncMock()
    url = f"{base_url}/v1/health/ping"
    mock_api.get(url, status=500, payload={"message": "boom"})
    mock_api.get(url, payload={"ok": True})
    try:
        await http.request("GET", "/v1/health/ping", retryable=True)
        assert on_request.call_count == 2
        assert on_error.call_count == 1
        assert isinstance(on_error.call_args[0][0].error, ServerError)
        on_response.assert_called_once()
        assert on_response.call_args[0][0].status == 200
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_failing_telemetry_hook_is_ignored(mock_api, api_key, base_url):
    def explode(info):
        raise RuntimeError("hook failure")

    http = HttpClient(api_key, base_url=base_url, telemetry=Telemetry(on_request=explode))
    mock_api.get(f"{base_url}/v1/health/ping", payload={"ok": True})
    try:
        resp = await http.request("GET", "/v1/health/ping")
        assert resp.data == {"ok": True}
    finally:
        await http.close()


# ── Server-Sent Events ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stream_sse_yields_frames(mock_api, http, base_url):
    url = f"{base_url}/v1/jobs/job-1/stream"
    body = (
        "id: 1\nevent: status\ndata: {\"status\": \"queued\"}\n\n"
        ": keep-alive comment\n\n"
        "id: 2\nevent: heartbeat\ndata: {}\n\n"
        "id: 3\nevent: terminal\ndata: {\"status\": \"succeeded\"}"
    )
    mock_api.get(url, body=body, content_type="text/event-stream")
    try:
        frames = [f async for f in http.stream_sse("/v1/jobs/job-1/stream", last_event_id="0")]
        assert [f.id for f in frames] == ["1", "2", "3"]
        assert [f.event for f in frames] == ["status", "heartbeat", "terminal"]
        assert frames[2].data == {"status": "succeeded"}

        (call,) = _calls(mock_api, "GET", url)
        assert call.kwargs["headers"]["Last-Event-ID"] == "0"
        assert call.kwargs["headers"]["Accept"] == "text/event-stream"
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_stream_sse_error_status(mock_api, http, base_url):
    mock_api.get(
        f"{base_url}/v1/jobs/missing/stream",
        status=404,
        payload={"error": {"code": "not_found", "message": "Job not found"}},
    )
    try:
        with pytest.raises(NotFoundError):
            async for _ in http.stream_sse("/v1/jobs/missing/stream"):
                pass
    finally:
        await http.close()


@pytest.mark.asyncio
async def test_close_leaves_caller_session_open(api_key, base_url):
    session = aiohttp.ClientSession()
    http = HttpClient(api_key, base_url=base_url, session=session)
    try:
        assert await http._ensure_session() is session
        await http.close()
        assert not session.closed
    finally:
        await session.close()
