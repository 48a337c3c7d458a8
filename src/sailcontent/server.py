"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the FastMCP lifespan context manager
- Register tools
- Serve over stdio
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import sailcontent.tools.fetch_deck as t_fetch_deck
import sailcontent.tools.rate_limit_status as t_rate_limit
import sailcontent.tools.read_content as t_read_content
import sailcontent.tools.review_flashcard as t_review
from sailcontent import __version__
from sailcontent.cache import ContentCache
from sailcontent.config import Settings
from sailcontent.errors import ContentFetchError
from sailcontent.fetcher import ContentFetcher, build_http_client
from sailcontent.ratelimit import RateLimitTracker
from sailcontent.retry import RetryPolicy, RetryStrategy
from sailcontent.schedulers import run_cache_cleanup_scheduler
from sailcontent.state import AppState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout is reserved for the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_state(settings: Settings) -> AppState:
    """Wire every shared component once. Nothing here is a global singleton."""
    http_client = build_http_client(settings.fetcher)

    cache = ContentCache(Path(settings.cache.cache_dir).expanduser())
    cache.init_dir()

    tracker = RateLimitTracker(settings.content.quota_host, settings.rate_limit)
    fetcher = ContentFetcher(
        http_client,
        cache=cache,
        tracker=tracker,
        retry=RetryStrategy(RetryPolicy.from_settings(settings.retry)),
        content=settings.content,
        settings=settings.fetcher,
        max_age=timedelta(days=settings.cache.max_age_days),
    )
    return AppState(
        settings=settings,
        tracker=tracker,
        http_client=http_client,
        cache=cache,
        fetcher=fetcher,
    )


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__)

    state = build_state(settings)
    cache_cleanup_task = asyncio.create_task(run_cache_cleanup_scheduler(state))

    log.info(
        "server_started",
        version=__version__,
        repo=f"{settings.content.owner}/{settings.content.repo}",
        branch=settings.content.branch,
        cache_dir=settings.cache.cache_dir,
    )

    try:
        yield state
    finally:
        cache_cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await cache_cleanup_task
        if state.http_client is not None:
            await state.http_client.aclose()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("sailcontent", lifespan=lifespan)
# FastMCP doesn't expose a version kwarg; set it on the underlying Server
# so the MCP initialize handshake reports our version, not the SDK's.
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: ContentFetchError) -> CallToolResult:
    """Convert a ContentFetchError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


async def _run_tool(tool: str, call: Awaitable[dict]) -> object:
    try:
        return await call
    except ContentFetchError as exc:
        log.warning(
            "tool_error",
            tool=tool,
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool=tool, exc_info=True)
        raise


@mcp.tool()
async def read_content(
    path: str,
    ctx: Context,
    force_refresh: bool = False,
    fallback_title: str = "",
) -> object:
    """Fetch a markdown document from the content repository and return it parsed.

    The result carries the title, nested sections, media and wikilinks. When
    the API quota is exhausted a cached copy is returned with degraded=true.
    """
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "read_content",
        t_read_content.handle(
            path, state, force_refresh=force_refresh, fallback_title=fallback_title
        ),
    )


@mcp.tool()
async def fetch_deck(folder: str, ctx: Context) -> object:
    """Fetch every markdown file in a repository folder as a flashcard deck."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool("fetch_deck", t_fetch_deck.handle(folder, state))


@mcp.tool()
async def review_flashcard(card: dict[str, Any], quality: int, ctx: Context) -> object:
    """Reschedule a flashcard after a review.

    quality: 0 = again, 1 = hard, 2 = good, 3 = easy.
    """
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool("review_flashcard", t_review.handle(card, quality, state))


@mcp.tool()
async def rate_limit_status(ctx: Context) -> object:
    """Report the remaining API quota and when it resets."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool("rate_limit_status", t_rate_limit.handle(state))


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
