"""Retry with exponential backoff for flaky upstream calls.

``with_retry`` wraps any zero-argument coroutine function. Failures are
classified by ``retry_condition``; retryable ones are retried after
``min(base_delay * backoff_multiplier ** attempt, max_delay)`` seconds plus
up to 10% random jitter. Nothing is shared between calls.

Usage:
    from ganj.core.retry import RetryOptions, with_retry

    data = await with_retry(lambda: client.fetch("/poets"), RetryOptions())
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx

from ganj.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


def is_network_error(error: BaseException) -> bool:
    """True for failures below the HTTP layer (DNS, connect, read timeouts)."""
    return isinstance(error, NETWORK_ERRORS)


def error_status(error: BaseException) -> int | None:
    """HTTP status carried by ``error``, if any."""
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return None


def default_retry_condition(error: BaseException) -> bool:
    """Retry network failures, 5xx responses and rate limiting."""
    if is_network_error(error):
        return True
    status = error_status(error)
    if status is None:
        return False
    return status >= 500 or status == 429


def is_rate_limited(error: BaseException) -> bool:
    return error_status(error) == 429


def is_transient_error(error: BaseException) -> bool:
    """Network failures and 5xx responses, leaving 429s to ``with_rate_limit_retry``."""
    return default_retry_condition(error) and not is_rate_limited(error)


@dataclass(frozen=True)
class RetryOptions:
    """Retry policy. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retry_condition: Callable[[BaseException], bool] = field(
        default=default_retry_condition
    )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (jitter included)."""
        delay = min(
            self.base_delay * self.backoff_multiplier**attempt,
            self.max_delay,
        )
        return delay + random.random() * 0.1 * delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
) -> T:
    """Run ``operation`` until it succeeds or its retries run out.

    Args:
        operation: Zero-argument coroutine function to call
        options: Retry policy (defaults to ``RetryOptions()``)

    Returns:
        The first successful result

    Raises:
        The last error raised by ``operation`` when it is not retryable or
        when ``max_retries`` retries have failed.
    """
    if options is None:
        options = RetryOptions()

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= options.max_retries or not options.retry_condition(e):
                raise

            delay = options.delay_for(attempt)
            attempt += 1
            logger.warning(
                "retry_attempt",
                attempt=attempt,
                max_retries=options.max_retries,
                delay_s=round(delay, 3),
                error=str(e),
                error_type=type(e).__name__,
            )
            await asyncio.sleep(delay)


async def with_retry_conditional(
    operation: Callable[[], Awaitable[T]],
    condition: Callable[[BaseException], bool],
    **overrides: Any,
) -> T:
    """Retry with a custom error classifier."""
    return await with_retry(
        operation, RetryOptions(retry_condition=condition, **overrides)
    )


async def with_network_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 2,
    **overrides: Any,
) -> T:
    """Retry only connection-level failures."""
    return await with_retry_conditional(
        operation, is_network_error, max_retries=max_retries, **overrides
    )


async def with_rate_limit_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 5,
    base_delay: float = 2.0,
    max_delay: float = 30.0,
) -> T:
    """Retry only 429 responses, with a slower backoff."""
    return await with_retry_conditional(
        operation,
        is_rate_limited,
        max_retries=max_retries,
        base_delay=base_delay,
        max_delay=max_delay,
    )


# Work left running by with_timeout, held until it finishes
_abandoned: set[asyncio.Task[Any]] = set()


def _forget_abandoned(task: asyncio.Task[Any]) -> None:
    _abandoned.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.debug("abandoned_work_failed", error=str(task.exception()))


async def with_timeout(
    awaitable: Awaitable[T],
    seconds: float,
    fallback: T,
    *,
    operation: str = "operation",
) -> T:
    """Return ``fallback`` if ``awaitable`` does not finish within ``seconds``.

    The work is abandoned, not aborted: it keeps running in the background,
    so a shared cache fetch it joined still completes for other callers.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if task in done:
        return task.result()

    logger.warning("client_timeout", operation=operation, timeout_s=seconds)
    _abandoned.add(task)
    task.add_done_callback(_forget_abandoned)
    return fallback
