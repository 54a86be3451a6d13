"""Tests for the backoff policy and the HTTP client"""

from __future__ import annotations

import httpx
import pytest

from wikimirror.errors import (
    RateLimitedError,
    RemoteError,
    RemoteQueryError,
    TransientRemoteError,
)
from wikimirror.observability import metrics
from wikimirror.remote.backoff import BackoffController
from wikimirror.remote.client import RemoteClient, parse_retry_after


class SleepRecorder:
    def __init__(self):
        self.waits: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


def scripted(*outcomes):
    """Async callable returning or raising the given outcomes in order"""
    remaining = list(outcomes)
    calls = []

    async def fn():
        calls.append(1)
        outcome = remaining.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    fn.calls = calls
    return fn


# ============ BackoffController ============


class TestBackoffController:
    @pytest.mark.asyncio
    async def test_rate_limit_waits_for_hint_and_is_free(self):
        sleep = SleepRecorder()
        backoff = BackoffController(max_attempts=1, sleep=sleep)
        fn = scripted(RateLimitedError(7), RateLimitedError(3), "ok")

        assert await backoff.call(fn) == "ok"
        assert sleep.waits == [7, 3]
        assert len(fn.calls) == 3
        assert metrics.rate_limit_waits == 2

    @pytest.mark.asyncio
    async def test_rate_limit_without_hint_uses_default(self):
        sleep = SleepRecorder()
        backoff = BackoffController(default_wait=60, sleep=sleep)
        fn = scripted(RateLimitedError(-1), "ok")

        assert await backoff.call(fn) == "ok"
        assert sleep.waits == [60]

    @pytest.mark.asyncio
    async def test_transient_linear_backoff_then_success(self):
        sleep = SleepRecorder()
        backoff = BackoffController(max_attempts=5, step_seconds=2, sleep=sleep)
        fn = scripted(TransientRemoteError("a"), TransientRemoteError("b"), "ok")

        assert await backoff.call(fn) == "ok"
        assert sleep.waits == [2, 4]
        assert metrics.retry_count == 2

    @pytest.mark.asyncio
    async def test_transient_gives_up_after_max_attempts(self):
        sleep = SleepRecorder()
        backoff = BackoffController(max_attempts=3, sleep=sleep)
        fn = scripted(*[TransientRemoteError(str(i)) for i in range(5)])

        with pytest.raises(TransientRemoteError):
            await backoff.call(fn)
        assert len(fn.calls) == 3
        assert sleep.waits == [1, 2]

    @pytest.mark.asyncio
    async def test_rate_limits_do_not_spend_transient_budget(self):
        sleep = SleepRecorder()
        backoff = BackoffController(max_attempts=2, sleep=sleep)
        fn = scripted(
            TransientRemoteError("a"),
            RateLimitedError(5),
            RateLimitedError(5),
            "ok",
        )
        assert await backoff.call(fn) == "ok"
        assert sleep.waits == [1, 5, 5]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        sleep = SleepRecorder()
        backoff = BackoffController(sleep=sleep)
        fn = scripted(RemoteError("bad request", status_code=400), "never")

        with pytest.raises(RemoteError):
            await backoff.call(fn)
        assert len(fn.calls) == 1
        assert sleep.waits == []

    @pytest.mark.asyncio
    async def test_on_wait_hook(self):
        seen = []
        backoff = BackoffController(
            sleep=SleepRecorder(),
            on_wait=lambda kind, seconds, attempt: seen.append((kind, seconds, attempt)),
        )
        fn = scripted(RateLimitedError(4), TransientRemoteError("x"), "ok")

        await backoff.call(fn)
        assert seen == [("rate_limit", 4, 0), ("transient", 1, 1)]

    @pytest.mark.asyncio
    async def test_plain_callable_returning_coroutine_is_awaited(self):
        """A lambda wrapping a coroutine is awaited and retried like an async def"""
        sleep = SleepRecorder()
        backoff = BackoffController(sleep=sleep)
        fn = scripted(TransientRemoteError("a"), "ok")

        result = await backoff.call(lambda: fn())
        assert result == "ok"
        assert len(fn.calls) == 2
        assert sleep.waits == [1]

    @pytest.mark.asyncio
    async def test_arguments_are_passed_on_every_attempt(self):
        seen = []

        async def echo(value, suffix=""):
            seen.append(value)
            if len(seen) == 1:
                raise TransientRemoteError("first")
            return value + suffix

        backoff = BackoffController(sleep=SleepRecorder())
        assert await backoff.call(echo, "a", suffix="!") == "a!"
        assert seen == ["a", "a"]


# ============ RemoteClient ============


def make_client(handler, **backoff_kwargs) -> tuple[RemoteClient, SleepRecorder]:
    sleep = SleepRecorder()
    backoff = BackoffController(sleep=sleep, **backoff_kwargs)
    client = RemoteClient(
        "https://remote.test/graphql",
        backoff=backoff,
        transport=httpx.MockTransport(handler),
    )
    return client, sleep


class TestRemoteClient:
    @pytest.mark.asyncio
    async def test_returns_data(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"ok": True}})

        client, _ = make_client(handler)
        async with client:
            assert await client.request("query Q { ok }") == {"ok": True}
        assert metrics.request_count == 1

    @pytest.mark.asyncio
    async def test_429_honours_retry_after(self):
        responses = [
            httpx.Response(429, headers={"Retry-After": "7"}),
            httpx.Response(200, json={"data": {"n": 1}}),
        ]
        client, sleep = make_client(lambda request: responses.pop(0))
        async with client:
            assert await client.request("query Q { n }") == {"n": 1}
        assert sleep.waits == [7.0]

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        responses = [
            httpx.Response(502),
            httpx.Response(503),
            httpx.Response(200, json={"data": {"n": 2}}),
        ]
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return responses.pop(0)

        client, sleep = make_client(handler)
        async with client:
            assert await client.request("query Q { n }") == {"n": 2}
        assert len(sent) == 3
        assert sleep.waits == [1, 2]

    @pytest.mark.asyncio
    async def test_network_error_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"data": {}})

        client, _ = make_client(handler)
        async with client:
            assert await client.request("query Q { n }") == {}
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            return httpx.Response(400, text="malformed")

        client, sleep = make_client(handler)
        async with client:
            with pytest.raises(RemoteError) as exc_info:
                await client.request("query Q { n }")
        assert exc_info.value.status_code == 400
        assert not isinstance(exc_info.value, TransientRemoteError)
        assert len(attempts) == 1
        assert sleep.waits == []

    @pytest.mark.asyncio
    async def test_error_payload_exhausts_budget(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"errors": [{"message": "boom"}]})

        client, sleep = make_client(handler, max_attempts=2)
        async with client:
            with pytest.raises(RemoteQueryError) as exc_info:
                await client.request("query Q { n }")
        assert exc_info.value.errors == [{"message": "boom"}]
        assert len(sleep.waits) == 1

    @pytest.mark.asyncio
    async def test_partial_errors_keep_data(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"p0": None}, "errors": [{"message": "not found"}]})

        client, _ = make_client(handler)
        async with client:
            assert await client.request("query Q { n }") == {"p0": None}

    @pytest.mark.asyncio
    async def test_sends_variables(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.read())
            return httpx.Response(200, json={"data": {}})

        client, _ = make_client(handler)
        async with client:
            await client.request("query Q($a: Int) { n }", {"a": 1})
        assert b'"variables": {"a": 1}' in seen[0] or b'"variables":{"a":1}' in seen[0]


def test_parse_retry_after():
    assert parse_retry_after("12", 60) == 12
    assert parse_retry_after(None, 60) == 60
    assert parse_retry_after("soon", 60) == 60
    assert parse_retry_after("-5", 60) == 0
