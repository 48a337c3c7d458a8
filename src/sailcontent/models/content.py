"""Structured content tree produced by the markdown parser.

All models are frozen: a parse result is built once and never mutated.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class MarkdownItem(_Frozen):
    """A list item; nesting follows source indentation and is unbounded."""

    title: str
    content: str | None = None  # Continuation text, or the answer of "Q :: A"
    image_path: str | None = None
    checked: bool | None = None  # None for plain (non-checkbox) items
    subitems: list[MarkdownItem] = []


class TextBlock(_Frozen):
    kind: Literal["text"] = "text"
    text: str


class ItemsBlock(_Frozen):
    kind: Literal["items"] = "items"
    items: list[MarkdownItem]


ContentBlock = Annotated[TextBlock | ItemsBlock, Field(discriminator="kind")]


class MarkdownSection(_Frozen):
    level: int  # 2, 3 or 4
    title: str | None = None  # None for the preface before any heading
    blocks: list[ContentBlock] = []
    subsections: list[MarkdownSection] = []

    @property
    def text(self) -> str:
        """All text blocks of this section joined by blank lines."""
        return "\n\n".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def items(self) -> list[MarkdownItem]:
        """All top-level list items of this section in source order."""
        return [item for b in self.blocks if isinstance(b, ItemsBlock) for item in b.items]


class MarkdownImage(_Frozen):
    path: str
    alt: str | None = None
    caption: str | None = None


class MarkdownVideo(_Frozen):
    url: str
    video_id: str
    provider: Literal["youtube", "vimeo"] = "youtube"
    title: str | None = None


class MarkdownAnimatedMedia(_Frozen):
    path: str
    type: Literal["gif", "mp4", "webm"]
    caption: str | None = None


class MarkdownWikilink(_Frozen):
    link: str
    display_text: str | None = None
    is_embedded: bool = False


class MarkdownContent(_Frozen):
    title: str = ""
    sections: list[MarkdownSection] = []
    images: list[MarkdownImage] = []
    videos: list[MarkdownVideo] = []
    animated_media: list[MarkdownAnimatedMedia] = []
    wikilinks: list[MarkdownWikilink] = []
    metadata: dict[str, str] = {}

    @property
    def is_empty(self) -> bool:
        return not self.title and not self.sections

    def with_fallback_title(self, title: str) -> MarkdownContent:
        """Return a copy titled ``title`` if this document has no H1."""
        if self.title or not title:
            return self
        return self.model_copy(update={"title": title})
