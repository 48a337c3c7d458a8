"""Background scheduler coroutine for cache cleanup."""

from __future__ import annotations

import asyncio
import random
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sailcontent.state import AppState

log = structlog.get_logger()


def _jittered_delay(base_seconds: float) -> float:
    return base_seconds * random.uniform(0.8, 1.2)


async def run_cache_cleanup_scheduler(
    state: AppState,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Sweep stale cache entries at startup, then on the configured interval."""
    max_age = timedelta(days=state.settings.cache.max_age_days)
    interval_seconds = state.settings.cache.cleanup_interval_hours * 3600

    while True:
        if state.cache is not None:
            try:
                await state.cache.clear_stale(max_age)
            except Exception:
                log.warning("cache_cleanup_scheduler_error", exc_info=True)
        await sleep(_jittered_delay(interval_seconds))
