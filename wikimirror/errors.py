"""Exception hierarchy for the sync engine"""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for sync engine failures"""


class RemoteError(SyncError):
    """A remote query could not be completed"""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(RemoteError):
    """Remote asked us to slow down; retried without spending the retry budget"""

    def __init__(self, retry_after: float, status_code: Optional[int] = 429):
        super().__init__(f"rate limited, retry after {retry_after:g}s", status_code)
        self.retry_after = retry_after


class TransientRemoteError(RemoteError):
    """Network error, timeout or 5xx; retried with linear backoff"""

    retryable = True


class RemoteQueryError(RemoteError):
    """Remote rejected the query (GraphQL errors without usable data)"""

    retryable = True

    def __init__(self, message: str, errors: Optional[list] = None, status_code: Optional[int] = None):
        super().__init__(message, status_code)
        self.errors = errors or []
