"""Remote source client - GraphQL over HTTP with the backoff policy applied"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ..errors import RateLimitedError, RemoteError, RemoteQueryError, TransientRemoteError
from ..observability import get_logger, track_latency
from .backoff import BackoffController


logger = get_logger("remote.client")


def parse_retry_after(value: Optional[str], default: float) -> float:
    """Convert a Retry-After header value into seconds"""
    if value is None or value == "":
        return default
    try:
        return max(0.0, float(value))
    except ValueError:
        return default


class RemoteClient:
    """Thin request wrapper; every call goes through the BackoffController"""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 60.0,
        backoff: Optional[BackoffController] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.endpoint = endpoint
        self.backoff = backoff or BackoffController()
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json", **(headers or {})},
        )

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """
        Execute a query and return its `data` object.

        Raises:
            RemoteError: after the backoff policy gives up, or immediately for
                non-retryable failures
        """
        payload = {"query": query, "variables": variables or {}}
        return await self.backoff.call(self._send, payload)

    @track_latency
    async def _send(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Single attempt; translates transport outcomes into RemoteError types"""
        try:
            response = await self._client.post(self.endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientRemoteError(f"network error: {e}") from e

        retry_after = response.headers.get("retry-after")
        if response.status_code == 429 or (response.is_error and retry_after is not None):
            raise RateLimitedError(
                parse_retry_after(retry_after, self.backoff.default_wait),
                status_code=response.status_code,
            )
        if response.status_code >= 500:
            raise TransientRemoteError(
                f"server error {response.status_code}", status_code=response.status_code
            )
        if response.is_error:
            raise RemoteError(
                f"request rejected with {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransientRemoteError("response body is not valid JSON") from e

        errors = body.get("errors") or []
        data = body.get("data")
        if data is None:
            message = errors[0].get("message", "unknown error") if errors else "response has no data"
            raise RemoteQueryError(message, errors=errors, status_code=response.status_code)
        if errors:
            logger.warning(f"Remote returned {len(errors)} errors alongside data: {errors[0].get('message')}")
        return data
