"""Retry support for calls to the ADX cluster.

Errors coming back from the Kusto SDK, from HTTP layers underneath it, or from
our own wrappers do not share a common shape. ``classify`` reduces any of them
to an ``ErrorClass`` by looking for an HTTP status (on the error itself or on a
nested ``response``) and then for well-known phrases in the error message.

``with_retry`` runs an async operation and retries it with exponential backoff
and +/-25% jitter until it succeeds, fails permanently, or runs out of
attempts. Unclassified errors are retried.
"""

import asyncio
import logging
import math
import random
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from adx_mcp.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


TRANSIENT_STATUS_CODES = frozenset({
    408,  # Request Timeout
    429,  # Too Many Requests
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
    520, 521, 522, 523, 524,  # Cloudflare origin errors
})

PERMANENT_STATUS_CODES = frozenset({
    400, 401, 403, 404, 405, 406, 409, 410, 413, 414, 415, 422,
})

TRANSIENT_PATTERNS = (
    "timeout",
    "timed out",
    "connection refused",
    "connection reset",
    "connection aborted",
    "network is unreachable",
    "host is unreachable",
    "no route to host",
    "temporary failure",
    "service unavailable",
    "server is busy",
    "rate limit",
    "throttle",
    "throttled",
    "enotfound",
    "econnreset",
    "econnrefused",
    "etimedout",
    "socket hang up",
    "socket timeout",
    "request timeout",
    "gateway timeout",
    "bad gateway",
    "server overloaded",
    "retry after",
    "try again",
    "temporarily unavailable",
)

PERMANENT_PATTERNS = (
    "authentication failed",
    "unauthorized",
    "access denied",
    "permission denied",
    "forbidden",
    "not found",
    "invalid syntax",
    "syntax error",
    "malformed",
    "bad request",
    "invalid query",
    "invalid parameter",
    "validation error",
    "schema error",
    "type mismatch",
    "column does not exist",
    "table does not exist",
    "function does not exist",
    "database does not exist",
)

# Probed in order; the first integer found wins.
_STATUS_FIELDS = ("status", "status_code", "statusCode", "code")
_RESPONSE_STATUS_FIELDS = ("status", "status_code", "statusCode")


@dataclass(frozen=True)
class ErrorSignal:
    """What the classifier could read off an error value."""

    status_code: int | None = None
    message: str = ""
    response_status_code: int | None = None

    @property
    def effective_status(self) -> int | None:
        if self.status_code is not None:
            return self.status_code
        return self.response_status_code


def _field(obj, name):
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _first_status(obj, fields) -> int | None:
    for name in fields:
        value = _field(obj, name)
        if isinstance(value, int) and not isinstance(value, bool) and value:
            return value
    return None


def extract_signal(error) -> ErrorSignal:
    if error is None or isinstance(error, (str, bytes)):
        status = response_status = None
    else:
        status = _first_status(error, _STATUS_FIELDS)
        response = _field(error, "response")
        response_status = None
        if response is not None and not isinstance(response, (str, bytes)):
            response_status = _first_status(response, _RESPONSE_STATUS_FIELDS)

    if isinstance(error, BaseException):
        message = str(error)
    elif isinstance(error, str):
        message = error
    else:
        message = ""

    return ErrorSignal(
        status_code=status,
        message=message.lower(),
        response_status_code=response_status,
    )


def classify(error) -> ErrorClass:
    """Classify an error as transient, permanent or unknown. Never raises."""
    try:
        signal = extract_signal(error)
    except Exception as exc:  # a broken __str__ or property on a foreign error
        logger.debug(f"Could not inspect {type(error).__name__}: {exc}")
        return ErrorClass.UNKNOWN

    status = signal.effective_status
    if status in TRANSIENT_STATUS_CODES:
        return ErrorClass.TRANSIENT
    if status in PERMANENT_STATUS_CODES:
        return ErrorClass.PERMANENT

    # A message naming both kinds of failure is permanent: retrying an
    # authentication or syntax problem cannot succeed.
    message = signal.message
    if any(p in message for p in PERMANENT_PATTERNS):
        return ErrorClass.PERMANENT
    if any(p in message for p in TRANSIENT_PATTERNS):
        return ErrorClass.TRANSIENT
    return ErrorClass.UNKNOWN


def is_transient_error(error) -> bool:
    return classify(error) is ErrorClass.TRANSIENT


def is_permanent_error(error) -> bool:
    return classify(error) is ErrorClass.PERMANENT


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_ms: float = 100
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be non-negative")
        if self.base_delay_ms < 0:
            raise ConfigurationError("base_delay_ms must be non-negative")
        if self.backoff_multiplier < 1:
            raise ConfigurationError("backoff_multiplier must be at least 1")


DEFAULT_RETRY_POLICY = RetryPolicy()


def calculate_backoff_delay(
    attempt: int,
    base_delay_ms: float,
    backoff_multiplier: float,
    rng: random.Random | None = None,
) -> int:
    """Delay in milliseconds before retrying after ``attempt`` (0-based) failed."""
    rng = rng or random
    delay = base_delay_ms * backoff_multiplier ** attempt
    jitter = rng.uniform(-0.25, 0.25) * delay
    return max(0, math.floor(delay + jitter))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    label: str = "operation",
) -> T:
    """Await ``operation()`` until it succeeds, retrying transient failures.

    Permanent errors and the error from the final attempt are re-raised as-is.
    """
    policy = policy or DEFAULT_RETRY_POLICY
    attempts = policy.max_retries + 1

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as error:
            error_class = classify(error)
            if error_class is ErrorClass.PERMANENT:
                logger.info(f"{label} failed with a permanent error, not retrying: {error}")
                raise
            if attempt == policy.max_retries:
                logger.error(f"{label} failed after {attempts} attempts: {error}")
                raise

            delay = calculate_backoff_delay(
                attempt, policy.base_delay_ms, policy.backoff_multiplier
            )
            logger.warning(
                f"{label} failed on attempt {attempt + 1}/{attempts} "
                f"({error_class.value}), retrying in {delay}ms. Error: {error}"
            )
            await asyncio.sleep(delay / 1000)
