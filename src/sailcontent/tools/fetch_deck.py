"""Tool handler for fetch_deck.

Fetches every markdown file of one folder as a flashcard deck. A batch cut
short by the rate limit still returns the cards fetched so far.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sailcontent.errors import ContentFetchError, ErrorCode
from sailcontent.flashcards import fetch_deck
from sailcontent.models.tools import FetchDeckInput, FetchDeckOutput

if TYPE_CHECKING:
    from sailcontent.state import AppState


async def handle(folder: str, state: AppState) -> dict:
    """Handle a fetch_deck tool call."""
    log = structlog.get_logger().bind(tool="fetch_deck", folder=folder)
    log.info("handler_called")

    try:
        validated = FetchDeckInput(folder=folder)
    except ValueError as exc:
        raise ContentFetchError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide the repository folder that holds the deck's markdown files.",
            recoverable=False,
        ) from exc

    if state.fetcher is None:
        raise RuntimeError("Fetcher not initialized")

    config = next((d for d in state.settings.decks if d.folder == validated.folder), None)
    deck, result = await fetch_deck(
        state.fetcher,
        validated.folder,
        config.display_name if config else validated.folder,
        description=config.description if config else None,
    )
    state.parsed_cache.preload(deck.flashcards)

    warning = None
    if result.rate_limited:
        warning = (
            f"Rate limit reached after {len(result.records)} file(s); "
            f"{len(result.skipped)} file(s) were not fetched."
        )
    elif result.failure_count:
        warning = f"{result.failure_count} file(s) could not be fetched."

    output = FetchDeckOutput(
        deck=deck,
        failures=result.failures,
        failure_count=result.failure_count,
        skipped=result.skipped,
        rate_limited=result.rate_limited,
        cancelled=result.cancelled,
        warning=warning,
    )
    return output.model_dump(mode="json")
