# src/transport/retry.py — v1
"""Bounded exponential-backoff retry for single outbound calls.

delay = min(base_delay * 2**attempt + uniform(0, jitter), max_delay)

Retryability is a pluggable ``should_retry(error, attempt)`` predicate.
Authorization failures are never retried by the default predicate, even
when their message happens to contain a transient-looking pattern.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from pulsecollect.core.errors import AuthorizationError, TransientError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})
AUTH_STATUS_CODES: frozenset[int] = frozenset({401, 403})

TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "temporarily unavailable",
    "service unavailable",
    "internal error",
    "server error",
    "network error",
    "connection reset",
    "econnreset",
    "etimedout",
)

AUTH_PATTERNS: tuple[str, ...] = (
    "oauthexception",
    "invalid_token",
    "access token",
    "access_token",
    "unauthorized",
    "expired token",
)

RATE_LIMIT_PATTERNS: tuple[str, ...] = ("rate limit", "too many requests")

# Codes as whole numbers only: "5000 items" is not a 500.
_RETRYABLE_CODE_IN_MESSAGE = re.compile(
    r"\b(?:" + "|".join(str(c) for c in sorted(RETRYABLE_STATUS_CODES)) + r")\b"
)
_RATE_LIMIT_CODE_IN_MESSAGE = re.compile(r"\b(?:429|4201)\b")

ShouldRetry = Callable[[BaseException, int], bool]


class RetryExhaustedError(Exception):
    """All retries exhausted (or error not retryable) for an outbound call."""

    def __init__(self, label: str, attempts: int, last_error: BaseException):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"'{label}' failed after {attempts} attempt(s): {last_error}"
        )


class HttpStatusError(Exception):
    """Non-2xx HTTP response, carrying the status code for classification."""

    def __init__(self, status_code: int, message: str, url: str = "") -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP {status_code}: {message}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry limits for a unit of work."""

    max_retries: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    jitter_s: float = 1.0

    @classmethod
    def from_settings(cls, settings: Any) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            base_delay_s=settings.retry_base_delay_s,
            max_delay_s=settings.retry_max_delay_s,
            jitter_s=settings.retry_jitter_s,
        )


def compute_delay(policy: RetryPolicy, attempt: int) -> float:
    """Compute delay for a given attempt (0-based)."""
    jitter = random.uniform(0.0, policy.jitter_s) if policy.jitter_s > 0 else 0.0  # noqa: S311
    return min(policy.base_delay_s * (2 ** attempt) + jitter, policy.max_delay_s)


def _status_code(error: BaseException) -> int | None:
    code = getattr(error, "status_code", None)
    if isinstance(code, int):
        return code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def is_auth_error(error: BaseException) -> bool:
    """True for credential errors, which must fail fast."""
    if isinstance(error, AuthorizationError):
        return True
    if _status_code(error) in AUTH_STATUS_CODES:
        return True
    msg = str(error).lower()
    return any(p in msg for p in AUTH_PATTERNS)


def is_rate_limit_error(error: BaseException) -> bool:
    if _status_code(error) == 429:
        return True
    msg = str(error).lower()
    if _RATE_LIMIT_CODE_IN_MESSAGE.search(msg):
        return True
    return any(p in msg for p in RATE_LIMIT_PATTERNS)


def default_should_retry(error: BaseException, attempt: int) -> bool:
    """Default retryability: transient HTTP statuses and error patterns."""
    if is_auth_error(error):
        return False

    if isinstance(error, (TransientError, httpx.TimeoutException, httpx.TransportError)):
        return True

    code = _status_code(error)
    if code is not None:
        return code in RETRYABLE_STATUS_CODES

    msg = str(error).lower()
    if _RETRYABLE_CODE_IN_MESSAGE.search(msg):
        return True
    return any(p in msg for p in TRANSIENT_PATTERNS)


def rate_limited_should_retry(
    extra_sleep_s: float,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Callable[[BaseException, int], Awaitable[bool]]:
    """Predicate that sleeps an extra fixed delay before retrying rate limits."""

    async def _predicate(error: BaseException, attempt: int) -> bool:
        if is_auth_error(error):
            return False
        if is_rate_limit_error(error):
            logger.info("Rate limited, sleeping %.1fs before backoff", extra_sleep_s)
            await sleep(extra_sleep_s)
            return True
        return default_should_retry(error, attempt)

    return _predicate


def token_refresh_should_retry(
    refresh: Callable[[], Awaitable[Any]],
) -> Callable[[BaseException, int], Awaitable[bool]]:
    """Predicate that refreshes an expired bearer token once, then defers."""

    async def _predicate(error: BaseException, attempt: int) -> bool:
        if is_auth_error(error):
            if attempt == 0:
                logger.info("Auth error on first attempt, refreshing token")
                try:
                    await refresh()
                except Exception as e:
                    logger.warning("Token refresh failed: %s", e)
                    return False
                return True
            return False
        return default_should_retry(error, attempt)

    return _predicate


async def _evaluate(
    predicate: Callable[[BaseException, int], Any],
    error: BaseException,
    attempt: int,
) -> bool:
    result = predicate(error, attempt)
    if asyncio.iscoroutine(result):
        result = await result
    return bool(result)


async def with_retry(
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    policy: RetryPolicy | None = None,
    should_retry: Callable[[BaseException, int], Any] | None = None,
    label: str = "call",
    on_retry: Callable[[int, BaseException, float], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> Any:
    """Execute an async function with retry logic.

    Raises:
        RetryExhaustedError: If the error is not retryable or all retries
            are exhausted. The original error is chained.
    """
    policy = policy or RetryPolicy()
    predicate = should_retry or default_should_retry
    attempt = 0

    while True:
        try:
            return await fn(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if attempt >= policy.max_retries:
                logger.error("'%s' failed after %d attempts: %s", label, attempt + 1, e)
                raise RetryExhaustedError(label, attempt + 1, e) from e

            if not await _evaluate(predicate, e, attempt):
                logger.warning("'%s' error is not retryable: %s", label, e)
                raise RetryExhaustedError(label, attempt + 1, e) from e

            delay = compute_delay(policy, attempt)
            logger.warning(
                "'%s' attempt %d/%d failed (%s), retrying in %.1fs",
                label, attempt + 1, policy.max_retries + 1, e, delay,
            )
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await sleep(delay)
            attempt += 1


@dataclass
class BatchResult:
    """Outcome of batch_with_retry: per-item successes and failures."""

    successes: list[tuple[int, Any]] = field(default_factory=list)
    failures: list[tuple[int, str]] = field(default_factory=list)


async def batch_with_retry(
    items: list[Any],
    fn: Callable[[Any, int], Awaitable[Any]],
    policy: RetryPolicy | None = None,
    continue_on_error: bool = True,
    label: str = "batch",
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BatchResult:
    """Process items independently, each with its own retry budget.

    Failures carry the message of the last error, not the exhaustion wrapper.
    """
    result = BatchResult()
    for index, item in enumerate(items):
        try:
            value = await with_retry(
                fn, item, index, policy=policy, label=f"{label}[{index}]", sleep=sleep,
            )
            result.successes.append((index, value))
        except RetryExhaustedError as e:
            result.failures.append((index, str(e.last_error)))
            if not continue_on_error:
                break
    return result
