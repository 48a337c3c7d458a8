from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from sailcontent.models.content import MarkdownContent
from sailcontent.models.fetch import FetchSource, FileFailure
from sailcontent.models.flashcard import Flashcard, FlashcardDeck, ReviewQuality

# ---------------------------------------------------------------------------
# read_content
# ---------------------------------------------------------------------------


class ReadContentInput(BaseModel):
    path: str = Field(max_length=1024)
    force_refresh: bool = False
    fallback_title: str = ""

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("path must not be empty")
        if ".." in v.split("/"):
            raise ValueError("path must not contain '..' segments")
        return v


class ReadContentOutput(BaseModel):
    path: str
    content: MarkdownContent
    source: FetchSource
    degraded: bool
    fetched_at: datetime | None
    warning: str | None = None


# ---------------------------------------------------------------------------
# fetch_deck
# ---------------------------------------------------------------------------


class FetchDeckInput(BaseModel):
    folder: str = Field(max_length=512)

    @field_validator("folder")
    @classmethod
    def validate_folder(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("folder must not be empty")
        return v


class FetchDeckOutput(BaseModel):
    deck: FlashcardDeck
    failures: list[FileFailure]
    failure_count: int
    skipped: list[str]
    rate_limited: bool
    cancelled: bool
    warning: str | None = None


# ---------------------------------------------------------------------------
# review_flashcard
# ---------------------------------------------------------------------------


class ReviewFlashcardInput(BaseModel):
    card: Flashcard
    quality: ReviewQuality


class ReviewFlashcardOutput(BaseModel):
    card: Flashcard
