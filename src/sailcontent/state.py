"""Application state container.

AppState is created once at server startup (inside the FastMCP lifespan context
manager) and injected into every tool handler via the MCP Context object. It
replaces process-wide singletons: each test builds its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sailcontent.flashcards import ParsedContentCache

if TYPE_CHECKING:
    import httpx

    from sailcontent.config import Settings
    from sailcontent.protocols import CacheProtocol, FetcherProtocol
    from sailcontent.ratelimit import RateLimitTracker


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    tracker: RateLimitTracker

    http_client: httpx.AsyncClient | None = None
    cache: CacheProtocol | None = None
    fetcher: FetcherProtocol | None = None
    parsed_cache: ParsedContentCache = field(default_factory=ParsedContentCache)
