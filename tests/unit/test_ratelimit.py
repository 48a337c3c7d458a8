"""Unit tests for sailcontent.ratelimit."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import httpx
import pytest

from sailcontent.config import RateLimitSettings
from sailcontent.ratelimit import RateLimitStatus, RateLimitTracker, is_quota_exhausted

API_HOST = "api.github.com"


def _response(
    url: str = "https://api.github.com/repos/o/r/contents/x",
    status: int = 200,
    *,
    remaining: int | None = None,
    limit: int | None = None,
    reset: datetime | None = None,
) -> httpx.Response:
    headers: dict[str, str] = {}
    if remaining is not None:
        headers["X-RateLimit-Remaining"] = str(remaining)
    if limit is not None:
        headers["X-RateLimit-Limit"] = str(limit)
    if reset is not None:
        headers["X-RateLimit-Reset"] = str(int(reset.timestamp()))
    return httpx.Response(status, headers=headers, request=httpx.Request("GET", url))


@pytest.fixture()
def tracker(clock) -> RateLimitTracker:
    return RateLimitTracker(API_HOST, RateLimitSettings(), clock=clock)


# ---------------------------------------------------------------------------
# observe
# ---------------------------------------------------------------------------


class TestObserve:
    def test_updates_from_api_headers(self, tracker: RateLimitTracker, clock) -> None:
        reset = clock.now + timedelta(minutes=30)
        tracker.observe(_response(remaining=42, limit=60, reset=reset))
        assert tracker.remaining == 42
        assert tracker.limit == 60
        assert tracker.reset_at == reset.replace(microsecond=0)

    def test_non_api_host_never_changes_remaining(self, tracker: RateLimitTracker) -> None:
        before = tracker.remaining
        tracker.observe(
            _response(
                "https://raw.githubusercontent.com/o/r/master/a.md", remaining=0, limit=60
            )
        )
        assert tracker.remaining == before
        assert tracker.status().state == "ok"

    def test_host_match_is_case_insensitive(self) -> None:
        tracker = RateLimitTracker("API.GitHub.com", RateLimitSettings())
        tracker.observe(_response(remaining=5))
        assert tracker.remaining == 5

    def test_missing_headers_leave_state_untouched(self, tracker: RateLimitTracker) -> None:
        tracker.observe(_response(remaining=30))
        tracker.observe(_response())
        assert tracker.remaining == 30

    def test_malformed_header_is_ignored(self, tracker: RateLimitTracker) -> None:
        response = httpx.Response(
            200,
            headers={"X-RateLimit-Remaining": "lots"},
            request=httpx.Request("GET", "https://api.github.com/x"),
        )
        tracker.observe(response)
        assert tracker.remaining == RateLimitSettings().initial_remaining

    def test_response_without_request_is_ignored(self, tracker: RateLimitTracker) -> None:
        tracker.observe(httpx.Response(200, headers={"X-RateLimit-Remaining": "0"}))
        assert tracker.status().state == "ok"


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


class TestStatus:
    def test_ok_by_default(self, tracker: RateLimitTracker) -> None:
        status = tracker.status()
        assert status == RateLimitStatus(state="ok", remaining=60)
        assert not status.is_limited

    def test_warning_below_threshold(self, tracker: RateLimitTracker) -> None:
        tracker.observe(_response(remaining=3))
        status = tracker.status()
        assert status.state == "warning"
        assert "Low API requests remaining: 3" in status.message

    def test_zero_remaining_is_limited(self, tracker: RateLimitTracker, clock) -> None:
        tracker.observe(_response(remaining=0, reset=clock.now + timedelta(hours=2)))
        status = tracker.status()
        assert status.is_limited
        assert status.time_until_reset == pytest.approx(7200, abs=1)
        assert status.message == "Rate limit exceeded. Try again in 2 hours"

    def test_limited_without_reset_uses_default_window(self, tracker: RateLimitTracker) -> None:
        tracker.observe(_response(remaining=0))
        status = tracker.status()
        assert status.is_limited
        assert status.time_until_reset == RateLimitSettings().default_reset_seconds

    def test_limit_without_reset_header_expires(self, tracker: RateLimitTracker, clock) -> None:
        tracker.observe(_response(status=403, remaining=0))
        assert tracker.status().is_limited
        assert tracker.reset_at == clock.now + timedelta(hours=1)

        clock.now += timedelta(days=2)
        status = tracker.status()
        assert status.state == "ok"
        assert status.remaining == RateLimitSettings().initial_remaining

    def test_past_reset_header_gets_default_window(self, tracker: RateLimitTracker, clock) -> None:
        tracker.observe(_response(remaining=0, reset=clock.now - timedelta(minutes=5)))
        status = tracker.status()
        assert status.is_limited
        assert status.time_until_reset == pytest.approx(3600)

    def test_minutes_message(self, tracker: RateLimitTracker, clock) -> None:
        tracker.observe(_response(remaining=0, reset=clock.now + timedelta(minutes=5)))
        assert tracker.status().message == "Rate limit exceeded. Try again in 5 minutes"

    def test_quota_replenished_once_reset_passes(self, tracker: RateLimitTracker, clock) -> None:
        tracker.observe(_response(remaining=0, limit=60, reset=clock.now + timedelta(minutes=1)))
        assert tracker.status().is_limited

        clock.now += timedelta(minutes=2)
        status = tracker.status()
        assert status.state == "ok"
        assert status.remaining == 60
        assert tracker.reset_at is None

    def test_recovers_when_api_reports_quota_again(self, tracker: RateLimitTracker) -> None:
        tracker.observe(_response(remaining=0))
        tracker.observe(_response(remaining=59))
        assert tracker.status().state == "ok"


# ---------------------------------------------------------------------------
# reset / debug_info / time_until_reset
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_reset_restores_defaults(self, tracker: RateLimitTracker) -> None:
        tracker.observe(_response(remaining=0, limit=5000))
        tracker.reset()
        assert tracker.remaining == 60
        assert tracker.limit == 60
        assert tracker.status().state == "ok"

    def test_time_until_reset_none_when_past(self, tracker: RateLimitTracker, clock) -> None:
        tracker.observe(_response(remaining=10, reset=clock.now - timedelta(seconds=5)))
        assert tracker.time_until_reset() is None

    def test_debug_info(self, tracker: RateLimitTracker, clock) -> None:
        tracker.observe(_response(remaining=0, limit=60, reset=clock.now + timedelta(hours=1)))
        info = tracker.debug_info()
        assert info["quota_host"] == API_HOST
        assert info["remaining"] == 0
        assert info["is_limited"] is True
        assert info["time_until_reset"] == "1:00:00"

    def test_status_to_dict(self) -> None:
        data = RateLimitStatus(state="ok", remaining=12).to_dict()
        assert data == {
            "state": "ok",
            "remaining": 12,
            "time_until_reset": None,
            "message": "API requests remaining: 12",
        }


class TestIsQuotaExhausted:
    def _plain(self, status: int, remaining: str | None = None) -> httpx.Response:
        headers = {"X-RateLimit-Remaining": remaining} if remaining is not None else {}
        return httpx.Response(status, headers=headers)

    def test_429(self) -> None:
        assert is_quota_exhausted(self._plain(429))

    def test_403_with_zero_remaining(self) -> None:
        assert is_quota_exhausted(self._plain(403, "0"))

    def test_plain_403_is_not_quota(self) -> None:
        assert not is_quota_exhausted(self._plain(403))

    def test_404(self) -> None:
        assert not is_quota_exhausted(self._plain(404))


def test_clock_defaults_to_utc() -> None:
    tracker = RateLimitTracker(API_HOST, RateLimitSettings())
    tracker.observe(_response(remaining=1, reset=datetime.now(UTC) + timedelta(hours=1)))
    assert tracker.time_until_reset() is not None
