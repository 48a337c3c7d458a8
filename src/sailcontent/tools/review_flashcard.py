"""Tool handler for review_flashcard. Pure scheduling, no I/O."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sailcontent.errors import ContentFetchError, ErrorCode
from sailcontent.models.tools import ReviewFlashcardInput, ReviewFlashcardOutput
from sailcontent.srs import review

if TYPE_CHECKING:
    from sailcontent.state import AppState


async def handle(card: dict, quality: int, state: AppState) -> dict:
    """Handle a review_flashcard tool call."""
    log = structlog.get_logger().bind(tool="review_flashcard", quality=quality)
    log.info("handler_called")

    try:
        validated = ReviewFlashcardInput(card=card, quality=quality)
    except ValueError as exc:
        raise ContentFetchError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Pass a card returned by fetch_deck and a quality from 0 (again) to 3 (easy).",
            recoverable=False,
        ) from exc

    updated = review(validated.card, validated.quality)
    return ReviewFlashcardOutput(card=updated).model_dump(mode="json")
