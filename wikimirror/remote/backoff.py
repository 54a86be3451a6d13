"""Backoff controller - wait/retry policy for remote calls

Two kinds of waits:

- Rate limit (HTTP 429 or a Retry-After hint): sleep for the server-indicated
  delay and retry the same request. These retries are free, they never use
  up the attempt budget.
- Transient failure (network error, timeout, 5xx, error payload): sleep
  attempt * step seconds and retry, giving up after max_attempts failures.

Anything else propagates immediately.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState

from ..errors import RateLimitedError, RemoteError
from ..observability import get_logger, metrics


T = TypeVar("T")

WaitHook = Callable[[str, float, int], None]

logger = get_logger("remote.backoff")


@dataclass
class _AttemptBudget:
    transient: int = 0


class BackoffController:
    """Centralized retry policy applied around every remote request"""

    def __init__(
        self,
        max_attempts: int = 10,
        default_wait: float = 60.0,
        step_seconds: float = 1.0,
        on_wait: Optional[WaitHook] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            max_attempts: Transient failures tolerated before giving up
            default_wait: Rate-limit wait when the server gives no hint
            step_seconds: Linear backoff step for transient failures
            on_wait: Optional hook called as (kind, seconds, attempt) before each wait
            sleep: Sleep coroutine, replaceable in tests
        """
        self.max_attempts = max_attempts
        self.default_wait = default_wait
        self.step_seconds = step_seconds
        self.on_wait = on_wait
        self._sleep = sleep

    def _rate_limit_delay(self, exc: RateLimitedError) -> float:
        if exc.retry_after is None or exc.retry_after < 0:
            return self.default_wait
        return exc.retry_after

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run fn(*args, **kwargs), retrying according to the policy

        fn may be any callable returning an awaitable, not only an async def.
        """
        budget = _AttemptBudget()

        def should_retry(state: RetryCallState) -> bool:
            if state.outcome is None or not state.outcome.failed:
                return False
            exc = state.outcome.exception()
            if isinstance(exc, RateLimitedError):
                return True
            if isinstance(exc, RemoteError) and exc.retryable:
                budget.transient += 1
                return True
            return False

        def should_stop(state: RetryCallState) -> bool:
            if isinstance(state.outcome.exception(), RateLimitedError):
                return False
            return budget.transient >= self.max_attempts

        def wait_for(state: RetryCallState) -> float:
            exc = state.outcome.exception()
            if isinstance(exc, RateLimitedError):
                return self._rate_limit_delay(exc)
            return budget.transient * self.step_seconds

        def before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception()
            seconds = state.next_action.sleep if state.next_action else 0.0
            if isinstance(exc, RateLimitedError):
                kind = "rate_limit"
                metrics.increment("rate_limit_waits")
                logger.warning(f"Rate limited, waiting {seconds:g}s before retrying")
            else:
                kind = "transient"
                metrics.increment("retry_count")
                logger.warning(
                    f"Remote error, retry #{budget.transient} in {seconds:g}s: {exc}"
                )
            if self.on_wait is not None:
                self.on_wait(kind, seconds, budget.transient)

        retrying = AsyncRetrying(
            retry=should_retry,
            stop=should_stop,
            wait=wait_for,
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        async def attempt() -> T:
            return await fn(*args, **kwargs)

        return await retrying(attempt)
