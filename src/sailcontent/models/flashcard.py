from __future__ import annotations

import re
from datetime import UTC, datetime
from enum import IntEnum
from pathlib import PurePosixPath
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

_H1_RE = re.compile(r"^#\s+(.+)$")


class ReviewQuality(IntEnum):
    """Review outcome on the 0–3 scale used throughout the scheduler."""

    AGAIN = 0
    HARD = 1
    GOOD = 2
    EASY = 3


class Flashcard(BaseModel):
    """A markdown flashcard plus its SM-2 scheduling fields.

    The caller owns persistence; the scheduler only computes new values.
    """

    id: UUID = Field(default_factory=uuid4)
    file_name: str
    markdown_content: str
    deck_id: UUID

    ease_factor: float = Field(default=2.5, ge=1.3)
    interval: int = 1  # days
    repetitions: int = 0
    last_reviewed: datetime | None = None
    next_review: datetime | None = None
    last_quality: int | None = Field(default=None, ge=0, le=3)

    def is_due(self, now: datetime | None = None) -> bool:
        if self.next_review is None:
            return True  # new cards are always due
        return (now or datetime.now(UTC)) >= self.next_review

    @property
    def display_title(self) -> str:
        """First H1, else the first meaningful line, else the file name stem."""
        in_frontmatter = False
        for index, raw in enumerate(self.markdown_content.splitlines()):
            line = raw.strip()
            if line == "---":
                # Only a leading delimiter opens frontmatter; any later one closes it.
                in_frontmatter = index == 0
                continue
            if in_frontmatter or not line:
                continue
            match = _H1_RE.match(line)
            if match:
                return match.group(1).strip()
            title = line.replace("**", "").replace("[[", "").replace("]]", "").strip()
            if title:
                return title
        return PurePosixPath(self.file_name).stem


class FlashcardDeck(BaseModel):
    """Flashcards sourced from one remote folder."""

    id: UUID = Field(default_factory=uuid4)
    folder_name: str
    display_name: str
    description: str | None = None
    flashcards: list[Flashcard] = []
    last_fetched: datetime | None = None


class ReviewStats(BaseModel):
    total: int
    due: int
    new: int
    learning: int
    mastered: int

    @property
    def due_percentage(self) -> float:
        return self.due / self.total if self.total else 0.0
