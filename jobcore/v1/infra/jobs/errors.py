"""
Failure taxonomy shared by the job router and the outbox drain.
"""

from datetime import timedelta
from enum import Enum

import httpx


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


# HTTP statuses meaning the target will never accept this request
PERMANENT_HTTP_STATUSES = frozenset({400, 401, 403, 404, 410, 422})


class JobError(Exception):
    """Base class for errors a handler raises to steer retry behaviour."""

    kind = ErrorKind.TRANSIENT


class TransientJobError(JobError):
    """Retry per the job's backoff policy."""


class PermanentJobError(JobError):
    """Dead-letter immediately, whatever attempts remain."""

    kind = ErrorKind.PERMANENT


class RetryLaterError(TransientJobError):
    """Transient failure that already knows when the next attempt is due."""

    def __init__(self, message: str, retry_after: timedelta):
        super().__init__(message)
        self.retry_after = retry_after


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception to transient or permanent.

    Unknown failures are transient so the retry budget decides.
    """
    if isinstance(exc, JobError):
        return exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        if exc.response.status_code in PERMANENT_HTTP_STATUSES:
            return ErrorKind.PERMANENT
        return ErrorKind.TRANSIENT
    # Timeouts, connection resets, rate limits and anything unrecognised
    return ErrorKind.TRANSIENT
