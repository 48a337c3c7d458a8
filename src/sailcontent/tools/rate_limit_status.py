"""Tool handler for rate_limit_status."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sailcontent.state import AppState


async def handle(state: AppState) -> dict:
    status = state.tracker.status()
    return {**status.to_dict(), "debug": state.tracker.debug_info()}
