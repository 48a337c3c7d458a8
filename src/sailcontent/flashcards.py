"""Flashcard deck ingestion.

A deck is one remote folder; every markdown file in it is one card. Deck
fetching is built on ``ContentFetcher.list_and_fetch`` and inherits its
partial-success semantics: a rate-limited batch still yields a deck of the
cards fetched so far.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from sailcontent.models.flashcard import Flashcard, FlashcardDeck
from sailcontent.parser import parse_markdown

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from sailcontent.config import DeckSettings
    from sailcontent.models.content import MarkdownContent
    from sailcontent.models.fetch import DirectoryFetchResult
    from sailcontent.protocols import FetcherProtocol

log = structlog.get_logger()

_SLOW_PARSE_MS = 10.0
_LARGE_CARD_BYTES = 1024


def deck_from_result(
    result: DirectoryFetchResult,
    display_name: str,
    *,
    description: str | None = None,
    deck_id: UUID | None = None,
    now: datetime | None = None,
) -> FlashcardDeck:
    deck = FlashcardDeck(
        folder_name=result.folder,
        display_name=display_name,
        description=description,
        last_fetched=now or datetime.now(UTC),
    )
    if deck_id is not None:
        deck = deck.model_copy(update={"id": deck_id})
    cards = [
        Flashcard(file_name=record.name, markdown_content=record.content, deck_id=deck.id)
        for record in result.records
    ]
    return deck.model_copy(update={"flashcards": cards})


async def fetch_deck(
    fetcher: FetcherProtocol,
    folder: str,
    display_name: str,
    *,
    description: str | None = None,
    existing_deck_id: UUID | None = None,
    cancel: asyncio.Event | None = None,
) -> tuple[FlashcardDeck, DirectoryFetchResult]:
    """Fetch one folder as a deck. Reuses ``existing_deck_id`` when given.

    Returns the deck together with the batch result so callers can report
    skipped or failed files.
    """
    result = await fetcher.list_and_fetch(folder, cancel=cancel)
    deck = deck_from_result(
        result, display_name, description=description, deck_id=existing_deck_id
    )
    log.info(
        "deck_fetched",
        folder=folder,
        cards=len(deck.flashcards),
        skipped=len(result.skipped),
        failed=result.failure_count,
    )
    return deck, result


async def fetch_all_decks(
    fetcher: FetcherProtocol,
    decks: Iterable[DeckSettings],
    *,
    existing: Iterable[FlashcardDeck] = (),
) -> list[FlashcardDeck]:
    """Fetch every configured deck concurrently.

    A deck that fails entirely is logged and left out; the others are
    returned in configuration order. Existing deck ids are preserved by
    folder name.
    """
    configs = list(decks)
    known = {deck.folder_name: deck.id for deck in existing}
    outcomes = await asyncio.gather(
        *(
            fetch_deck(
                fetcher,
                config.folder,
                config.display_name,
                description=config.description,
                existing_deck_id=known.get(config.folder),
            )
            for config in configs
        ),
        return_exceptions=True,
    )

    fetched: list[FlashcardDeck] = []
    for config, outcome in zip(configs, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            log.warning(
                "deck_fetch_failed",
                folder=config.folder,
                error=str(outcome),
                exc_info=outcome,
            )
            continue
        fetched.append(outcome[0])
    return fetched


def merge_deck(existing: FlashcardDeck, fetched: FlashcardDeck) -> FlashcardDeck:
    """Fold a freshly fetched deck into a stored one.

    Cards are matched by file name. Matched cards keep their id and SRS
    progress and take the new markdown; new files become new cards. Cards
    whose file was not fetched this time are kept, since a partial batch
    is not evidence that the file was removed.
    """
    by_name = {card.file_name: card for card in fetched.flashcards}
    merged: list[Flashcard] = []
    updated = 0
    for card in existing.flashcards:
        fresh = by_name.pop(card.file_name, None)
        if fresh is not None and fresh.markdown_content != card.markdown_content:
            card = card.model_copy(update={"markdown_content": fresh.markdown_content})
            updated += 1
        merged.append(card)
    added = [card.model_copy(update={"deck_id": existing.id}) for card in by_name.values()]

    log.debug(
        "deck_merged",
        folder=existing.folder_name,
        updated=updated,
        added=len(added),
    )
    return existing.model_copy(
        update={
            "flashcards": merged + added,
            "display_name": fetched.display_name,
            "description": fetched.description,
            "last_fetched": fetched.last_fetched or existing.last_fetched,
        }
    )


class ParsedContentCache:
    """In-memory cache of parsed card markdown, keyed by card id.

    An entry is reparsed when the card's markdown no longer matches the
    text it was parsed from.
    """

    def __init__(self) -> None:
        self._entries: dict[UUID, tuple[str, MarkdownContent]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, card: Flashcard, base_path: str = "") -> MarkdownContent:
        entry = self._entries.get(card.id)
        if entry is not None and entry[0] == card.markdown_content:
            return entry[1]

        started = time.perf_counter()
        parsed = parse_markdown(card.markdown_content, base_path)
        elapsed_ms = (time.perf_counter() - started) * 1000
        self._entries[card.id] = (card.markdown_content, parsed)

        size = len(card.markdown_content.encode("utf-8"))
        if size > _LARGE_CARD_BYTES or elapsed_ms > _SLOW_PARSE_MS:
            log.debug(
                "card_parsed",
                file_name=card.file_name,
                elapsed_ms=round(elapsed_ms, 1),
                size_bytes=size,
            )
        return parsed

    def invalidate(self, card_id: UUID) -> None:
        self._entries.pop(card_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def preload(self, cards: Iterable[Flashcard]) -> int:
        """Parse every card not already cached. Returns how many were parsed."""
        started = time.perf_counter()
        parsed = 0
        for card in cards:
            entry = self._entries.get(card.id)
            if entry is None or entry[0] != card.markdown_content:
                self.get(card)
                parsed += 1
        elapsed_ms = (time.perf_counter() - started) * 1000
        if parsed:
            log.info("cards_preparsed", count=parsed, elapsed_ms=round(elapsed_ms, 1))
        return parsed
