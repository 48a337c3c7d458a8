"""Integration test fixtures.

Provides a fully wired AppState (real cache in a temporary directory, real
tracker and fetcher over an httpx client that respx can intercept) and a
baseline environment for subprocess-based MCP tests.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import httpx
import pytest

from sailcontent.fetcher import ContentFetcher
from sailcontent.retry import RetryPolicy, RetryStrategy
from sailcontent.state import AppState

if TYPE_CHECKING:
    from pathlib import Path

    from sailcontent.cache import ContentCache
    from sailcontent.config import Settings
    from sailcontent.ratelimit import RateLimitTracker


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Baseline env dict for subprocess-based MCP integration tests.

    Points the cache at an isolated tmp directory and overrides any local
    sailcontent.yaml that might change logging or network settings.
    """
    env = os.environ.copy()
    env["SAILCONTENT__CACHE__CACHE_DIR"] = str(tmp_path / "cache")
    env["SAILCONTENT__LOGGING__FORMAT"] = "json"
    env["SAILCONTENT__CONTENT__RAW_BASE_URL"] = "http://127.0.0.1:1"
    env["SAILCONTENT__CONTENT__API_BASE_URL"] = "http://127.0.0.1:1"
    return env


@pytest.fixture()
async def app_state(
    settings: Settings, cache: ContentCache, tracker: RateLimitTracker
) -> AppState:
    """Full AppState wired the way server.lifespan wires it."""
    async with httpx.AsyncClient() as client:
        fetcher = ContentFetcher(
            client,
            cache=cache,
            tracker=tracker,
            retry=RetryStrategy(RetryPolicy.from_settings(settings.retry), sleep=_no_sleep),
            content=settings.content,
            settings=settings.fetcher,
        )
        yield AppState(
            settings=settings,
            tracker=tracker,
            http_client=client,
            cache=cache,
            fetcher=fetcher,
        )
