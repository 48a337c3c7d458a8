"""API quota tracking fed by GitHub rate-limit response headers.

Only responses from the quota-bearing API host update the tracker. The raw
content CDN never sends rate-limit headers and does not consume quota, so its
responses are ignored. State is an advisory, eventually-consistent counter:
concurrent fetches may read a slightly stale value, which at worst costs one
extra rejected request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Literal

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from sailcontent.config import RateLimitSettings

log = structlog.get_logger()

RateLimitState = Literal["ok", "warning", "limited"]


@dataclass(frozen=True)
class RateLimitStatus:
    state: RateLimitState
    remaining: int
    time_until_reset: float | None = None  # seconds; set only when limited

    @property
    def is_limited(self) -> bool:
        return self.state == "limited"

    @property
    def message(self) -> str:
        if self.state == "ok":
            return f"API requests remaining: {self.remaining}"
        if self.state == "warning":
            return f"Low API requests remaining: {self.remaining}. Consider refreshing later."
        seconds = int(self.time_until_reset or 0)
        hours, minutes = seconds // 3600, (seconds % 3600) // 60
        if hours > 0:
            return f"Rate limit exceeded. Try again in {hours} hour{'s' if hours > 1 else ''}"
        return f"Rate limit exceeded. Try again in {minutes} minute{'s' if minutes != 1 else ''}"

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "remaining": self.remaining,
            "time_until_reset": self.time_until_reset,
            "message": self.message,
        }


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def is_quota_exhausted(response: httpx.Response) -> bool:
    """True for 429s, and for 403s that report zero remaining quota."""
    if response.status_code == 429:
        return True
    return (
        response.status_code == 403
        and _parse_int(response.headers.get("X-RateLimit-Remaining")) == 0
    )


class RateLimitTracker:
    def __init__(
        self,
        quota_host: str,
        settings: RateLimitSettings,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.quota_host = quota_host.lower()
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))
        self.remaining = settings.initial_remaining
        self.limit = settings.initial_remaining
        self.reset_at: datetime | None = None
        self._limited = False

    def observe(self, response: httpx.Response) -> None:
        """Update quota state from a response's X-RateLimit-* headers."""
        try:
            host = (response.url.host or "").lower()
        except RuntimeError:
            # Response built without a request: nothing to attribute it to.
            return
        if host != self.quota_host:
            return

        remaining = _parse_int(response.headers.get("X-RateLimit-Remaining"))
        limit = _parse_int(response.headers.get("X-RateLimit-Limit"))
        reset = _parse_int(response.headers.get("X-RateLimit-Reset"))

        if remaining is not None:
            self.remaining = remaining
        if limit is not None:
            self.limit = limit
        if reset is not None:
            self.reset_at = datetime.fromtimestamp(reset, tz=UTC)

        limited = self.remaining <= 0
        if limited and self.time_until_reset() is None:
            # No usable reset time; assume the default window so the limit can roll over.
            self.reset_at = self._clock() + timedelta(seconds=self._settings.default_reset_seconds)
        self._transition(limited)
        if not self._limited and self.remaining < self._settings.warning_threshold:
            log.info("rate_limit_low", remaining=self.remaining, limit=self.limit)

    def status(self) -> RateLimitStatus:
        if self._limited and self.reset_at is not None and self._clock() >= self.reset_at:
            # The reset moment has passed; assume the quota window rolled over.
            self.remaining = self.limit if self.limit > 0 else self._settings.initial_remaining
            self.reset_at = None
            self._transition(False)

        if self._limited:
            return RateLimitStatus(
                state="limited",
                remaining=self.remaining,
                time_until_reset=self.time_until_reset() or self._settings.default_reset_seconds,
            )
        if self.remaining < self._settings.warning_threshold:
            return RateLimitStatus(state="warning", remaining=self.remaining)
        return RateLimitStatus(state="ok", remaining=self.remaining)

    def time_until_reset(self) -> float | None:
        """Seconds until the advertised reset, or None if unknown or already past."""
        if self.reset_at is None:
            return None
        seconds = (self.reset_at - self._clock()).total_seconds()
        return seconds if seconds > 0 else None

    def reset(self) -> None:
        self.remaining = self._settings.initial_remaining
        self.limit = self._settings.initial_remaining
        self.reset_at = None
        self._limited = False

    def debug_info(self) -> dict:
        until = self.time_until_reset()
        return {
            "quota_host": self.quota_host,
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
            "time_until_reset": str(timedelta(seconds=int(until))) if until else None,
            "is_limited": self._limited,
        }

    def _transition(self, limited: bool) -> None:
        if limited and not self._limited:
            log.warning(
                "rate_limit_exceeded",
                remaining=self.remaining,
                reset_at=self.reset_at.isoformat() if self.reset_at else None,
            )
        elif not limited and self._limited:
            log.info("rate_limit_reset", remaining=self.remaining)
        self._limited = limited
