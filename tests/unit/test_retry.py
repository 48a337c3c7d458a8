"""Unit tests for sailcontent.retry."""

from __future__ import annotations

import pytest

from sailcontent.config import RetrySettings
from sailcontent.retry import (
    AGGRESSIVE_POLICY,
    CONSERVATIVE_POLICY,
    DEFAULT_POLICY,
    MIN_DELAY_SECONDS,
    RetriesExhaustedError,
    RetryPolicy,
    RetryStrategy,
)


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class _Flaky:
    """Fails ``failures`` times with ``error`` then returns ``value``."""

    def __init__(self, failures: int, error: Exception, value: str = "ok") -> None:
        self.failures = failures
        self.error = error
        self.value = value
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.value


# ---------------------------------------------------------------------------
# RetryPolicy.delay
# ---------------------------------------------------------------------------


class TestRetryPolicyDelay:
    def test_exponential_without_jitter(self) -> None:
        policy = RetryPolicy(max_attempts=10, base_delay=1, max_delay=10, jitter=False)
        assert policy.delay(1) == 1
        assert policy.delay(2) == 2
        assert policy.delay(3) == 4

    def test_capped_at_max_delay(self) -> None:
        policy = RetryPolicy(max_attempts=10, base_delay=1, max_delay=10, jitter=False)
        assert policy.delay(10) <= 10
        assert policy.delay(50) == 10

    def test_jitter_stays_within_twenty_percent(self) -> None:
        policy = RetryPolicy(max_attempts=5, base_delay=1, max_delay=30, jitter=True)
        for _ in range(200):
            assert 3.2 <= policy.delay(3) <= 4.8

    def test_jitter_never_drops_below_floor(self) -> None:
        policy = RetryPolicy(max_attempts=5, base_delay=0.01, max_delay=30, jitter=True)
        for _ in range(50):
            assert policy.delay(1) >= MIN_DELAY_SECONDS

    def test_from_settings(self) -> None:
        policy = RetryPolicy.from_settings(
            RetrySettings(max_attempts=4, base_delay_seconds=0.5, max_delay_seconds=8, jitter=False)
        )
        assert policy == RetryPolicy(max_attempts=4, base_delay=0.5, max_delay=8, jitter=False)

    def test_presets(self) -> None:
        assert DEFAULT_POLICY.max_attempts == 3
        assert AGGRESSIVE_POLICY.max_attempts > DEFAULT_POLICY.max_attempts
        assert CONSERVATIVE_POLICY.max_attempts < DEFAULT_POLICY.max_attempts


# ---------------------------------------------------------------------------
# RetryStrategy.execute
# ---------------------------------------------------------------------------


class TestRetryStrategy:
    async def test_success_first_try_does_not_sleep(self) -> None:
        sleep = _Recorder()
        strategy = RetryStrategy(DEFAULT_POLICY, sleep=sleep)
        op = _Flaky(0, RuntimeError("boom"))
        assert await strategy.execute(op) == "ok"
        assert op.calls == 1
        assert sleep.delays == []

    async def test_recovers_after_transient_failures(self) -> None:
        sleep = _Recorder()
        policy = RetryPolicy(max_attempts=3, base_delay=1, max_delay=10, jitter=False)
        op = _Flaky(2, RuntimeError("transient"))
        assert await RetryStrategy(policy, sleep=sleep).execute(op) == "ok"
        assert op.calls == 3
        assert sleep.delays == [1, 2]

    async def test_exhaustion_wraps_last_error(self) -> None:
        sleep = _Recorder()
        policy = RetryPolicy(max_attempts=3, base_delay=1, max_delay=10, jitter=False)
        last = RuntimeError("still down")
        op = _Flaky(5, last)
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await RetryStrategy(policy, sleep=sleep).execute(op)
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert exc_info.value.__cause__ is last
        assert op.calls == 3
        # No sleep after the final attempt
        assert len(sleep.delays) == 2

    async def test_non_retriable_error_propagates_immediately(self) -> None:
        sleep = _Recorder()
        op = _Flaky(5, ValueError("bad input"))
        with pytest.raises(ValueError, match="bad input"):
            await RetryStrategy(DEFAULT_POLICY, sleep=sleep).execute(
                op, lambda exc: not isinstance(exc, ValueError)
            )
        assert op.calls == 1
        assert sleep.delays == []

    async def test_single_attempt_policy(self) -> None:
        sleep = _Recorder()
        policy = RetryPolicy(max_attempts=1, base_delay=1, max_delay=1, jitter=False)
        with pytest.raises(RetriesExhaustedError):
            await RetryStrategy(policy, sleep=sleep).execute(_Flaky(1, RuntimeError("x")))
        assert sleep.delays == []
