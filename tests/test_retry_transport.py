import asyncio
from unittest.mock import AsyncMock, call

import httpx
import pytest

from app.services.errors import TransportError
from app.services.retry_transport import RetryTransport, is_retryable_status

ENDPOINT = "https://gemini.test/v1beta/models/m:generateContent"


def scripted(*statuses):
    """Answer each request with the next status; record the calls."""
    queue = list(statuses)
    handler_calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        handler_calls.append(request)
        return httpx.Response(queue.pop(0), json={"ok": True})

    return handler, handler_calls


def transport_for(handler, **kw):
    sleep = AsyncMock()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RetryTransport(client, sleep=sleep, **kw), sleep


@pytest.mark.parametrize("status,expected", [
    (429, True), (500, True), (503, True), (599, True),
    (200, False), (400, False), (404, False), (600, False),
])
def test_is_retryable_status(status, expected):
    assert is_retryable_status(status) is expected


@pytest.mark.asyncio
async def test_retries_429_with_doubling_delay():
    handler, seen = scripted(429, 429, 200)
    rt, sleep = transport_for(handler, base_delay_ms=1000)

    resp = await rt.call(ENDPOINT, {"contents": []})

    assert resp.status_code == 200
    assert len(seen) == 3
    assert sleep.await_args_list == [call(1.0), call(2.0)]


@pytest.mark.asyncio
async def test_final_server_error_raises_without_extra_sleep():
    handler, seen = scripted(503, 503, 503)
    rt, sleep = transport_for(handler, base_delay_ms=100)

    with pytest.raises(TransportError) as exc:
        await rt.call(ENDPOINT, {})

    assert "503" in str(exc.value)
    assert len(seen) == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_client_error_is_returned_immediately():
    handler, seen = scripted(400)
    rt, sleep = transport_for(handler)

    resp = await rt.call(ENDPOINT, {})

    assert resp.status_code == 400
    assert len(seen) == 1
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_network_failure_keeps_last_error():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    rt, sleep = transport_for(handler, max_attempts=2, base_delay_ms=50)

    with pytest.raises(TransportError) as exc:
        await rt.call(ENDPOINT, {})

    assert len(attempts) == 2
    assert isinstance(exc.value.last_error, httpx.ConnectError)
    assert exc.value.__cause__ is exc.value.last_error
    assert sleep.await_args_list == [call(0.05)]


@pytest.mark.asyncio
async def test_network_failure_then_success():
    outcomes = [httpx.ReadTimeout, 200]

    def handler(request: httpx.Request) -> httpx.Response:
        nxt = outcomes.pop(0)
        if nxt is httpx.ReadTimeout:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(nxt, json={})

    rt, sleep = transport_for(handler)
    resp = await rt.call(ENDPOINT, {})
    assert resp.status_code == 200
    assert sleep.await_count == 1


@pytest.mark.asyncio
async def test_per_call_overrides():
    handler, seen = scripted(500, 500, 500, 500)
    rt, sleep = transport_for(handler, max_attempts=2, base_delay_ms=1000)

    with pytest.raises(TransportError):
        await rt.call(ENDPOINT, {}, max_attempts=4, base_delay_ms=10)

    assert len(seen) == 4
    assert sleep.await_args_list == [call(0.01), call(0.02), call(0.04)]


def test_backoff_is_deterministic_without_jitter():
    rt = RetryTransport(httpx.AsyncClient(), base_delay_ms=250)
    assert [rt.backoff_ms(a) for a in range(4)] == [250, 500, 1000, 2000]


def test_backoff_jitter_is_bounded():
    rt = RetryTransport(httpx.AsyncClient(), base_delay_ms=100, jitter_ms=40)
    for _ in range(50):
        assert 200 <= rt.backoff_ms(1) <= 240


@pytest.mark.asyncio
@pytest.mark.parametrize("configured,override", [(0, None), (3, 0), (-2, None)])
async def test_attempts_never_drop_below_one(configured, override):
    handler, seen = scripted(503, 503, 503)
    rt, sleep = transport_for(handler, max_attempts=configured)

    with pytest.raises(TransportError) as exc:
        await rt.call(ENDPOINT, {}, max_attempts=override)

    assert len(seen) == 1
    assert str(exc.value) == "Model API returned 503 after 1 attempts"
    sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_during_backoff_propagates():
    handler, seen = scripted(503, 503, 503)
    waiting = asyncio.Event()

    async def slow_sleep(seconds):
        waiting.set()
        await asyncio.sleep(3600)

    rt = RetryTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)), sleep=slow_sleep)
    task = asyncio.create_task(rt.call(ENDPOINT, {}))
    await waiting.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(seen) == 1
