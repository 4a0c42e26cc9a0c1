"""Concurrent fan-out: start every job, wait for all of them to settle."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from spec_council.errors import OperationCancelledError, StageFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FanOutResult(Generic[T]):
    results: dict[str, T] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)   # key -> error message

    @property
    def attempted(self) -> int:
        return len(self.results) + len(self.failures)

    def raise_if_empty(self, stage: str, round_number: int) -> None:
        """Raise StageFailedError when jobs ran and none succeeded."""
        if self.attempted and not self.results:
            detail = "; ".join(f"{k}: {v}" for k, v in sorted(self.failures.items()))
            raise StageFailedError(stage, round_number, f"all {self.attempted} agents failed ({detail})")


async def _settle(key: str, job: Callable[[], Awaitable[T]]) -> tuple[str, T | BaseException]:
    """Run one job. Never raises, except for task cancellation."""
    try:
        return key, await job()
    except Exception as exc:
        if not isinstance(exc, OperationCancelledError):
            logger.warning("Job %s failed: %s", key, exc)
        return key, exc


async def fan_out(jobs: Mapping[str, Callable[[], Awaitable[T]]]) -> FanOutResult[T]:
    """Run all jobs concurrently; one job's failure never cancels its siblings.

    Args:
        jobs: Key (usually an agent id) -> zero-argument coroutine factory.

    Returns:
        FanOutResult with successes and failure messages keyed like `jobs`.

    Raises:
        OperationCancelledError: If any job was cancelled. Siblings still settle first.
    """
    settled = await asyncio.gather(*(_settle(key, job) for key, job in jobs.items()))

    outcome: FanOutResult[T] = FanOutResult()
    for key, value in settled:
        if isinstance(value, OperationCancelledError):
            raise value
        if isinstance(value, BaseException):
            outcome.failures[key] = str(value) or type(value).__name__
        else:
            outcome.results[key] = value

    logger.debug("Fan-out settled: %d ok, %d failed", len(outcome.results), len(outcome.failures))
    return outcome
