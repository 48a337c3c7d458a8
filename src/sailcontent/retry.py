"""Bounded retry with exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sailcontent.config import RetrySettings

log = structlog.get_logger()

T = TypeVar("T")

MIN_DELAY_SECONDS = 0.1
JITTER_FRACTION = 0.2


class RetriesExhaustedError(Exception):
    """Every attempt failed with a retriable error.

    Distinct from the underlying failure, which is kept as ``last_error``
    (and chained as ``__cause__``).
    """

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (1-based) before the next one."""
        capped = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        if not self.jitter:
            return capped
        spread = capped * JITTER_FRACTION
        return max(MIN_DELAY_SECONDS, capped + random.uniform(-spread, spread))


DEFAULT_POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0)
AGGRESSIVE_POLICY = RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=60.0)
CONSERVATIVE_POLICY = RetryPolicy(max_attempts=2, base_delay=2.0, max_delay=15.0)


def _always_retry(_exc: Exception) -> bool:
    return True


class RetryStrategy:
    """Runs an async operation up to ``policy.max_attempts`` times."""

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.policy = policy
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        should_retry: Callable[[Exception], bool] = _always_retry,
    ) -> T:
        """Await ``operation`` until it succeeds or retrying is pointless.

        A non-retriable error propagates unchanged on the attempt it occurs.
        When the final attempt fails with a retriable error,
        ``RetriesExhaustedError`` is raised from that last error.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not should_retry(exc):
                    raise
                if attempt >= self.policy.max_attempts:
                    log.warning("retries_exhausted", attempts=attempt, error=str(exc))
                    raise RetriesExhaustedError(attempt, exc) from exc
                delay = self.policy.delay(attempt)
                log.info(
                    "retry_scheduled",
                    attempt=attempt,
                    max_attempts=self.policy.max_attempts,
                    delay=round(delay, 3),
                    error=str(exc),
                )
                await self._sleep(delay)
                attempt += 1
