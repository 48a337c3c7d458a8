"""Unit tests for sailcontent.flashcards.

Deck ingestion is exercised against an in-memory fetcher that satisfies
FetcherProtocol, so no HTTP mocking is needed here.
"""

from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest

from sailcontent.config import DeckSettings
from sailcontent.errors import ContentFetchError, ErrorCode
from sailcontent.flashcards import ParsedContentCache, fetch_all_decks, fetch_deck, merge_deck
from sailcontent.models.fetch import DirectoryFetchResult, FetchedFile
from sailcontent.models.flashcard import Flashcard, FlashcardDeck


class FakeFetcher:
    def __init__(self, folders: dict[str, dict[str, str]], failing: set[str] = frozenset()):
        self.folders = folders
        self.failing = failing

    async def fetch(self, path, *, use_cache=True, force_refresh=False):
        raise NotImplementedError

    async def list_directory(self, folder):
        raise NotImplementedError

    async def list_and_fetch(
        self, folder: str, *, cancel: asyncio.Event | None = None
    ) -> DirectoryFetchResult:
        await asyncio.sleep(0)
        if folder in self.failing:
            raise ContentFetchError(
                code=ErrorCode.FETCH_FAILED,
                message=f"listing {folder} failed",
                suggestion="",
                status_code=404,
            )
        files = self.folders.get(folder, {})
        return DirectoryFetchResult(
            folder=folder,
            records=[
                FetchedFile(name=name, path=f"{folder}/{name}", content=text, source="network")
                for name, text in files.items()
            ],
        )


# ---------------------------------------------------------------------------
# fetch_deck / fetch_all_decks
# ---------------------------------------------------------------------------


class TestFetchDeck:
    async def test_builds_cards_from_records(self) -> None:
        fetcher = FakeFetcher({"огни": {"a.md": "# A", "b.md": "# B"}})
        deck, result = await fetch_deck(fetcher, "огни", "Lights", description="Night lights")

        assert deck.folder_name == "огни"
        assert deck.display_name == "Lights"
        assert deck.description == "Night lights"
        assert deck.last_fetched is not None
        assert [c.file_name for c in deck.flashcards] == ["a.md", "b.md"]
        assert all(c.deck_id == deck.id for c in deck.flashcards)
        assert result.complete

    async def test_reuses_existing_deck_id(self) -> None:
        existing_id = uuid4()
        fetcher = FakeFetcher({"f": {"a.md": "# A"}})
        deck, _ = await fetch_deck(fetcher, "f", "F", existing_deck_id=existing_id)
        assert deck.id == existing_id
        assert deck.flashcards[0].deck_id == existing_id


class TestFetchAllDecks:
    async def test_failed_deck_is_skipped(self) -> None:
        fetcher = FakeFetcher(
            {"one": {"a.md": "# A"}, "three": {"c.md": "# C"}},
            failing={"two"},
        )
        configs = [
            DeckSettings(folder="one", display_name="One"),
            DeckSettings(folder="two", display_name="Two"),
            DeckSettings(folder="three", display_name="Three"),
        ]
        decks = await fetch_all_decks(fetcher, configs)
        assert [d.display_name for d in decks] == ["One", "Three"]

    async def test_existing_ids_preserved_by_folder(self) -> None:
        known = FlashcardDeck(folder_name="one", display_name="Old name")
        fetcher = FakeFetcher({"one": {"a.md": "# A"}})
        decks = await fetch_all_decks(
            fetcher, [DeckSettings(folder="one", display_name="One")], existing=[known]
        )
        assert decks[0].id == known.id


# ---------------------------------------------------------------------------
# merge_deck
# ---------------------------------------------------------------------------


class TestMergeDeck:
    def _deck(self, cards: dict[str, str]) -> FlashcardDeck:
        deck = FlashcardDeck(folder_name="f", display_name="F")
        return deck.model_copy(
            update={
                "flashcards": [
                    Flashcard(file_name=name, markdown_content=text, deck_id=deck.id)
                    for name, text in cards.items()
                ]
            }
        )

    def test_preserves_progress_and_updates_content(self) -> None:
        existing = self._deck({"a.md": "# A v1", "b.md": "# B"})
        studied = existing.flashcards[0].model_copy(update={"repetitions": 4, "interval": 30})
        existing = existing.model_copy(update={"flashcards": [studied, existing.flashcards[1]]})
        fetched = self._deck({"a.md": "# A v2", "c.md": "# C"})

        merged = merge_deck(existing, fetched)

        by_name = {c.file_name: c for c in merged.flashcards}
        assert set(by_name) == {"a.md", "b.md", "c.md"}
        assert by_name["a.md"].id == studied.id
        assert by_name["a.md"].repetitions == 4
        assert by_name["a.md"].interval == 30
        assert by_name["a.md"].markdown_content == "# A v2"
        assert by_name["c.md"].deck_id == existing.id
        assert merged.id == existing.id

    def test_unchanged_cards_are_identical(self) -> None:
        existing = self._deck({"a.md": "# A"})
        merged = merge_deck(existing, self._deck({"a.md": "# A"}))
        assert merged.flashcards == existing.flashcards


# ---------------------------------------------------------------------------
# ParsedContentCache
# ---------------------------------------------------------------------------


class TestParsedContentCache:
    def _card(self, text: str = "# Title\n- item") -> Flashcard:
        return Flashcard(file_name="a.md", markdown_content=text, deck_id=uuid4())

    def test_get_caches_by_id(self) -> None:
        cache = ParsedContentCache()
        card = self._card()
        first = cache.get(card)
        assert first.title == "Title"
        assert cache.get(card) is first
        assert len(cache) == 1

    def test_changed_markdown_is_reparsed(self) -> None:
        cache = ParsedContentCache()
        card = self._card("# Old")
        cache.get(card)
        updated = card.model_copy(update={"markdown_content": "# New"})
        assert cache.get(updated).title == "New"

    def test_invalidate_and_clear(self) -> None:
        cache = ParsedContentCache()
        a, b = self._card(), self._card()
        cache.preload([a, b])
        cache.invalidate(a.id)
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0

    @pytest.mark.parametrize("count", [0, 3])
    def test_preload_counts_new_parses(self, count: int) -> None:
        cache = ParsedContentCache()
        cards = [self._card() for _ in range(count)]
        assert cache.preload(cards) == count
        assert cache.preload(cards) == 0
