"""Shared test fixtures for the sailcontent test suite.

Every test gets its own cache directory, tracker and fetcher; nothing is
shared between tests.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest

from sailcontent.cache import ContentCache
from sailcontent.config import Settings
from sailcontent.fetcher import ContentFetcher
from sailcontent.ratelimit import RateLimitTracker
from sailcontent.retry import RetryPolicy, RetryStrategy


async def no_sleep(_seconds: float) -> None:
    return None


class FakeClock:
    """Settable clock for time-dependent components."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        cache={"cache_dir": str(tmp_path / "cache")},
        retry={"max_attempts": 3, "base_delay_seconds": 0.01, "jitter": False},
        fetcher={"batch_delay_seconds": 0},
    )


@pytest.fixture()
def cache(settings: Settings) -> ContentCache:
    cache = ContentCache(Path(settings.cache.cache_dir))
    cache.init_dir()
    return cache


@pytest.fixture()
def tracker(settings: Settings) -> RateLimitTracker:
    return RateLimitTracker(settings.content.quota_host, settings.rate_limit)


@pytest.fixture()
async def fetcher(
    settings: Settings, cache: ContentCache, tracker: RateLimitTracker
) -> ContentFetcher:
    async with httpx.AsyncClient() as client:
        yield ContentFetcher(
            client,
            cache=cache,
            tracker=tracker,
            retry=RetryStrategy(RetryPolicy.from_settings(settings.retry), sleep=no_sleep),
            content=settings.content,
            settings=settings.fetcher,
        )
