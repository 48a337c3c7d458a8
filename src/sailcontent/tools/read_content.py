"""Tool handler for read_content.

Receives AppState, fetches the document through the content pipeline,
parses it relative to its own path and returns a structured dict.
No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sailcontent.errors import ContentFetchError, ErrorCode
from sailcontent.models.tools import ReadContentInput, ReadContentOutput
from sailcontent.parser import parse_markdown
from sailcontent.ratelimit import RateLimitStatus

if TYPE_CHECKING:
    from sailcontent.state import AppState


async def handle(
    path: str,
    state: AppState,
    *,
    force_refresh: bool = False,
    fallback_title: str = "",
) -> dict:
    """Handle a read_content tool call."""
    log = structlog.get_logger().bind(tool="read_content", path=path)
    log.info("handler_called")

    try:
        validated = ReadContentInput(
            path=path, force_refresh=force_refresh, fallback_title=fallback_title
        )
    except ValueError as exc:
        raise ContentFetchError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a repository-relative path such as 'notes/knots.md'.",
            recoverable=False,
        ) from exc

    if state.fetcher is None:
        raise RuntimeError("Fetcher not initialized")

    result = await state.fetcher.fetch(validated.path, force_refresh=validated.force_refresh)
    content = parse_markdown(result.content, validated.path).with_fallback_title(
        validated.fallback_title
    )

    warning = None
    if result.degraded:
        warning = "Showing cached content; it may be out of date."
        if result.time_until_reset:
            status = RateLimitStatus(
                state="limited", remaining=0, time_until_reset=result.time_until_reset
            )
            warning = f"{warning} {status.message}."
        log.warning("degraded_response", cached_at=result.fetched_at)

    output = ReadContentOutput(
        path=validated.path,
        content=content,
        source=result.source,
        degraded=result.degraded,
        fetched_at=result.fetched_at,
        warning=warning,
    )
    return output.model_dump(mode="json")
