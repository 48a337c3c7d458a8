from __future__ import annotations

from sailcontent.models.cache import CacheEntry, CacheMetadata
from sailcontent.models.content import (
    ContentBlock,
    ItemsBlock,
    MarkdownAnimatedMedia,
    MarkdownContent,
    MarkdownImage,
    MarkdownItem,
    MarkdownSection,
    MarkdownVideo,
    MarkdownWikilink,
    TextBlock,
)
from sailcontent.models.fetch import (
    DirectoryEntry,
    DirectoryFetchResult,
    FetchedFile,
    FetchResult,
    FileFailure,
)
from sailcontent.models.flashcard import Flashcard, FlashcardDeck, ReviewQuality, ReviewStats
from sailcontent.models.tools import (
    FetchDeckInput,
    FetchDeckOutput,
    ReadContentInput,
    ReadContentOutput,
    ReviewFlashcardInput,
    ReviewFlashcardOutput,
)

__all__ = [
    # cache
    "CacheEntry",
    "CacheMetadata",
    # content
    "ContentBlock",
    "TextBlock",
    "ItemsBlock",
    "MarkdownContent",
    "MarkdownSection",
    "MarkdownItem",
    "MarkdownImage",
    "MarkdownVideo",
    "MarkdownAnimatedMedia",
    "MarkdownWikilink",
    # fetch
    "FetchResult",
    "DirectoryEntry",
    "DirectoryFetchResult",
    "FetchedFile",
    "FileFailure",
    # flashcards
    "Flashcard",
    "FlashcardDeck",
    "ReviewQuality",
    "ReviewStats",
    # tools
    "ReadContentInput",
    "ReadContentOutput",
    "FetchDeckInput",
    "FetchDeckOutput",
    "ReviewFlashcardInput",
    "ReviewFlashcardOutput",
]
