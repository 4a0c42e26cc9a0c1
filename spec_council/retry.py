"""Retry with exponential backoff and jitter, plus cooperative cancellation."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from spec_council.errors import AuthorizationError, InputValidationError, OperationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    # network
    "network", "connection", "connect error", "fetch",
    # timeout
    "timeout", "timed out", "504",
    # rate limit
    "rate limit", "429", "too many requests",
    # server
    "500", "502", "503", "server error", "overloaded",
    # availability
    "unavailable", "temporarily",
)


class CancellationToken:
    """One-shot cancellation signal shared by a session's in-flight operations."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class RetryOptions:
    max_retries: int = 3
    initial_delay: float = 1.0     # seconds
    max_delay: float = 30.0        # seconds
    multiplier: float = 2.0
    jitter: bool = True
    is_retryable: Callable[[BaseException], bool] | None = None
    on_retry: Callable[[int, BaseException, float], None] | None = None
    token: CancellationToken | None = None


def is_transient_error(error: BaseException) -> bool:
    """Return True when the error looks like it will resolve on retry.

    Validation, authorization and cancellation errors are never transient.
    """
    if isinstance(error, (InputValidationError, AuthorizationError, OperationCancelledError)):
        return False
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    status = getattr(error, "status", None)
    if isinstance(status, int):
        if status in (408, 429) or status >= 500:
            return True
        if 400 <= status < 500:
            return False
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def calculate_delay(
    attempt: int,
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    jitter: bool,
) -> float:
    """Delay before retry number `attempt` (0-indexed), optionally jittered by ±25%."""
    delay = min(initial_delay * multiplier ** attempt, max_delay)
    if jitter:
        delay *= random.uniform(0.75, 1.25)
    return delay


async def sleep_or_cancel(delay: float, token: CancellationToken | None) -> None:
    """Sleep for `delay` seconds; raise OperationCancelledError as soon as the token fires."""
    if token is None:
        await asyncio.sleep(delay)
        return
    if token.cancelled:
        raise OperationCancelledError()
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({waiter}, timeout=delay)
    finally:
        if not waiter.done():
            waiter.cancel()
    if done:
        raise OperationCancelledError()


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await `awaitable`, abandoning it if the token fires first."""
    if token is None:
        return await awaitable
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelledError()
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if not waiter.done():
            waiter.cancel()
    if not work.done():
        work.cancel()
        raise OperationCancelledError()
    return work.result()


async def with_retry(operation: Callable[[], Awaitable[T]], options: RetryOptions | None = None) -> T:
    """Run `operation`, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        options: Retry policy. Defaults to 3 retries, 1s initial delay, 30s cap, x2, jitter.

    Returns:
        The first successful result.

    Raises:
        OperationCancelledError: If the token is (or becomes) cancelled; the operation is never
            invoked when the token is already cancelled.
        Exception: The last error, once retries are exhausted or on a non-retryable error.
    """
    opts = options or RetryOptions()
    retryable = opts.is_retryable or is_transient_error

    for attempt in range(opts.max_retries + 1):
        if opts.token is not None and opts.token.cancelled:
            raise OperationCancelledError()
        try:
            return await operation()
        except OperationCancelledError:
            raise
        except Exception as exc:
            if attempt >= opts.max_retries or not retryable(exc):
                raise
            delay = calculate_delay(attempt, opts.initial_delay, opts.max_delay, opts.multiplier, opts.jitter)
            if opts.on_retry is not None:
                opts.on_retry(attempt + 1, exc, delay)
            else:
                logger.debug("Retry %d in %.2fs after: %s", attempt + 1, delay, exc)
            await sleep_or_cancel(delay, opts.token)

    raise AssertionError("unreachable")  # loop always returns or raises
