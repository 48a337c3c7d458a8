"""Lenient markdown parser for hand-authored learning content.

``parse_markdown`` never raises: malformed input degrades to a partial tree
(empty title, fewer sections). The pipeline is

1. frontmatter: a leading ``---`` block of flat ``key: value`` lines;
2. title: the first ``# `` line (kept in the body, skipped by the section scan);
3. media and wikilink extraction, line by line and independent of structure;
4. section scan: a fold over the body lines with an immutable ``_ScanState``
   holding the open H2, the open H3/H4, the preface and the pending list run;
5. list runs become nested ``MarkdownItem`` trees, 2 spaces per level.

Fenced code blocks are kept verbatim as text and never interpreted as
headings or lists.
"""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field, replace
from functools import reduce

from sailcontent.models.content import (
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

_HEADING_RE = re.compile(r"^(#{1,4})[ \t]+(.*)$")
_LIST_ITEM_RE = re.compile(r"^([ \t]*)[-*+][ \t]+(?:\[([ xX])\][ \t]+)?(.*)$")
_HR_RE = re.compile(r"^(?:-{3,}|\*{3,}|_{3,})$")
_FENCE_PREFIXES = ("```", "~~~")

# Shared by extraction and display rendering so both agree on what a link is.
_WIKILINK_RE = re.compile(r"(!?)\[\[([^\[\]|]+?)(?:\|([^\[\]]*))?\]\]")
_MD_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")

_YOUTUBE_RE = re.compile(
    r"^https?://(?:www\.|m\.)?(?:youtube\.com/(?:watch\?(?:.*&)?v=|embed/|shorts/)|youtu\.be/)"
    r"([A-Za-z0-9_-]+)"
)
_VIMEO_RE = re.compile(r"^https?://(?:www\.|player\.)?vimeo\.com/(?:video/)?(\d+)")

_ANIMATED_EXTENSIONS = {"gif": "gif", "mp4": "mp4", "webm": "webm"}
_IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "svg", "webp", "bmp", "heic", "tif", "tiff"})


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def resolve_path(path: str, base_path: str = "") -> str:
    """Resolve a media path relative to the directory of ``base_path``.

    Absolute URLs and paths with a leading ``/`` pass through unchanged.
    """
    if path.startswith(("http://", "https://", "/")) or not base_path:
        return path
    base_dir = posixpath.dirname(base_path)
    return posixpath.normpath(posixpath.join(base_dir, path))


def render_wikilinks(text: str) -> str:
    """Replace every wikilink with its display text.

    ``[[a/b/Page|Shown]]`` → ``Shown``; ``[[a/b/Page.md]]`` and
    ``![[img/chart.png]]`` → their last path component (``.md`` dropped).
    """
    return _WIKILINK_RE.sub(lambda m: _display_text(m.group(2), m.group(3)), text)


def _display_text(link: str, display: str | None) -> str:
    if display and display.strip():
        return display.strip()
    name = link.strip().rstrip("/").rsplit("/", 1)[-1]
    return name[:-3] if name.lower().endswith(".md") else name


def _extension(path: str) -> str:
    name = path.split("?", 1)[0].split("#", 1)[0].rsplit("/", 1)[-1]
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


# ---------------------------------------------------------------------------
# Stage 1–2: frontmatter and title
# ---------------------------------------------------------------------------


def _split_frontmatter(text: str) -> tuple[dict[str, str], list[str]]:
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, lines
    for end in range(1, len(lines)):
        if lines[end].strip() == "---":
            return _parse_frontmatter(lines[1:end]), lines[end + 1 :]
    # Unclosed block: treat the document as having no frontmatter.
    return {}, lines


def _parse_frontmatter(lines: list[str]) -> dict[str, str]:
    metadata: dict[str, str] = {}
    for line in lines:
        if ":" not in line or line.lstrip().startswith("#"):
            continue
        key, _, value = line.partition(":")
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        metadata[key] = value
    return metadata


def _find_title(lines: list[str]) -> str:
    in_fence = False
    for line in lines:
        if line.strip().startswith(_FENCE_PREFIXES):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        match = _HEADING_RE.match(line)
        if match and len(match.group(1)) == 1 and match.group(2).strip():
            return render_wikilinks(match.group(2).strip())
    return ""


# ---------------------------------------------------------------------------
# Stage 3: media and link extraction
# ---------------------------------------------------------------------------


@dataclass
class _Media:
    images: list[MarkdownImage] = field(default_factory=list)
    videos: list[MarkdownVideo] = field(default_factory=list)
    animated: list[MarkdownAnimatedMedia] = field(default_factory=list)
    wikilinks: list[MarkdownWikilink] = field(default_factory=list)


def _extract_media(lines: list[str], base_path: str) -> _Media:
    media = _Media()
    for line in lines:
        for match in _MD_IMAGE_RE.finditer(line):
            alt = match.group(1).strip() or None
            target = match.group(2).strip().split()
            if not target:
                continue
            _classify_link(media, target[0], alt, base_path)

        for match in _WIKILINK_RE.finditer(line):
            embedded = match.group(1) == "!"
            link = match.group(2).strip()
            display = (match.group(3) or "").strip() or None
            media.wikilinks.append(
                MarkdownWikilink(link=link, display_text=display, is_embedded=embedded)
            )
            ext = _extension(link)
            # An embed without a media extension (a note transclusion) is a wikilink only.
            if embedded and (ext in _ANIMATED_EXTENSIONS or ext in _IMAGE_EXTENSIONS):
                _classify_link(media, link, display, base_path)
    return media


def _classify_link(media: _Media, target: str, label: str | None, base_path: str) -> None:
    youtube = _YOUTUBE_RE.match(target)
    if youtube:
        media.videos.append(
            MarkdownVideo(url=target, video_id=youtube.group(1), provider="youtube", title=label)
        )
        return
    vimeo = _VIMEO_RE.match(target)
    if vimeo:
        media.videos.append(
            MarkdownVideo(url=target, video_id=vimeo.group(1), provider="vimeo", title=label)
        )
        return
    path = resolve_path(target, base_path)
    animated = _ANIMATED_EXTENSIONS.get(_extension(target))
    if animated is not None:
        media.animated.append(MarkdownAnimatedMedia(path=path, type=animated, caption=label))
    else:
        media.images.append(MarkdownImage(path=path, alt=label))


# ---------------------------------------------------------------------------
# Stage 5: list items
# ---------------------------------------------------------------------------


@dataclass
class _ItemDraft:
    indent: int
    text: str
    checked: bool | None
    continuation: list[str] = field(default_factory=list)
    children: list[MarkdownItem] = field(default_factory=list)

    def build(self, base_path: str) -> MarkdownItem:
        title, answer = self.text, None
        if "::" in title:
            question, _, rest = title.partition("::")
            title, answer = question.strip(), rest.strip()

        image_path = _first_image_path(title, base_path)
        if image_path is not None:
            stripped = _WIKILINK_RE.sub(
                lambda m: "" if m.group(1) else m.group(0), _MD_IMAGE_RE.sub("", title)
            ).strip()
            title = stripped or title

        parts = [p for p in (answer, *self.continuation) if p]
        content = render_wikilinks("\n".join(parts)) if parts else None
        if image_path is None and content:
            image_path = _first_image_path(content, base_path)

        return MarkdownItem(
            title=render_wikilinks(title),
            content=content,
            image_path=image_path,
            checked=self.checked,
            subitems=self.children,
        )


def _first_image_path(text: str, base_path: str) -> str | None:
    for match in _MD_IMAGE_RE.finditer(text):
        target = match.group(2).strip().split()
        if target and not (_YOUTUBE_RE.match(target[0]) or _VIMEO_RE.match(target[0])):
            return resolve_path(target[0], base_path)
    for match in _WIKILINK_RE.finditer(text):
        if match.group(1) and _extension(match.group(2)) in _IMAGE_EXTENSIONS:
            return resolve_path(match.group(2).strip(), base_path)
    return None


def _build_items(lines: tuple[str, ...], base_path: str) -> list[MarkdownItem]:
    roots: list[MarkdownItem] = []
    stack: list[_ItemDraft] = []

    def close_top() -> None:
        done = stack.pop().build(base_path)
        (stack[-1].children if stack else roots).append(done)

    for raw in lines:
        line = raw.replace("\t", "  ")
        match = _LIST_ITEM_RE.match(line)
        if match is None:
            text = line.strip()
            if text and stack:
                stack[-1].continuation.append(text)
            continue

        indent = len(match.group(1))
        while stack and indent <= stack[-1].indent:
            close_top()
        mark = match.group(2)
        stack.append(
            _ItemDraft(
                indent=indent,
                text=match.group(3).strip(),
                checked=None if mark is None else mark in "xX",
            )
        )

    while stack:
        close_top()
    return roots


# ---------------------------------------------------------------------------
# Stage 4: section scan
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _OpenSection:
    level: int
    title: str | None
    blocks: tuple[TextBlock | ItemsBlock, ...] = ()
    subsections: tuple[MarkdownSection, ...] = ()
    text_open: bool = False

    def add_text(self, line: str) -> _OpenSection:
        if self.text_open and self.blocks and isinstance(self.blocks[-1], TextBlock):
            merged = TextBlock(text=f"{self.blocks[-1].text}\n{line}")
            return replace(self, blocks=(*self.blocks[:-1], merged))
        return replace(self, blocks=(*self.blocks, TextBlock(text=line)), text_open=True)

    def add_items(self, items: list[MarkdownItem]) -> _OpenSection:
        if not items:
            return self
        return replace(self, blocks=(*self.blocks, ItemsBlock(items=items)), text_open=False)

    def close_text(self) -> _OpenSection:
        return replace(self, text_open=False) if self.text_open else self

    def nest(self, section: MarkdownSection) -> _OpenSection:
        return replace(self, subsections=(*self.subsections, section), text_open=False)

    def build(self) -> MarkdownSection:
        return MarkdownSection(
            level=self.level,
            title=self.title,
            blocks=list(self.blocks),
            subsections=list(self.subsections),
        )


@dataclass(frozen=True)
class _ScanState:
    sections: tuple[MarkdownSection, ...] = ()
    h2: _OpenSection | None = None
    h3: _OpenSection | None = None
    preface: _OpenSection | None = None
    pending: tuple[str, ...] = ()
    fence: str | None = None
    title_seen: bool = False


def _on_target(state: _ScanState, update) -> _ScanState:
    """Apply ``update`` to the innermost open section (preface if none)."""
    if state.h3 is not None:
        return replace(state, h3=update(state.h3))
    if state.h2 is not None:
        return replace(state, h2=update(state.h2))
    return replace(state, preface=update(state.preface or _OpenSection(level=2, title=None)))


def _flush(state: _ScanState, base_path: str) -> _ScanState:
    if not state.pending:
        return state
    items = _build_items(state.pending, base_path)
    return replace(_on_target(state, lambda s: s.add_items(items)), pending=())


def _close_text(state: _ScanState) -> _ScanState:
    if state.h3 is None and state.h2 is None and state.preface is None:
        return state
    return _on_target(state, _OpenSection.close_text)


def _close_h3(state: _ScanState) -> _ScanState:
    if state.h3 is None:
        return state
    section = state.h3.build()
    if state.h2 is not None:
        return replace(state, h2=state.h2.nest(section), h3=None)
    return replace(state, sections=(*state.sections, section), h3=None)


def _close_h2(state: _ScanState) -> _ScanState:
    state = _close_h3(state)
    if state.h2 is None:
        return state
    return replace(state, sections=(*state.sections, state.h2.build()), h2=None)


def _step(state: _ScanState, line: str, base_path: str) -> _ScanState:
    stripped = line.strip()

    if state.fence is not None:
        state = _on_target(state, lambda s: s.add_text(line.rstrip()))
        if stripped.startswith(state.fence):
            state = _close_text(replace(state, fence=None))
        return state

    if stripped.startswith(_FENCE_PREFIXES):
        state = _close_text(_flush(state, base_path))
        state = _on_target(state, lambda s: s.add_text(line.rstrip()))
        return replace(state, fence=stripped[:3])

    if not stripped:
        # Blank lines inside a list run keep it together; elsewhere they end a paragraph.
        return state if state.pending else _close_text(state)

    heading = _HEADING_RE.match(line)
    if heading and not (state.title_seen and len(heading.group(1)) == 1):
        level = len(heading.group(1))
        title = render_wikilinks(heading.group(2).strip()) or None
        state = _close_text(_flush(state, base_path))
        if level == 1:
            # The title line; any later H1 is body text.
            return replace(state, title_seen=title is not None)
        if level == 2:
            return replace(_close_h2(state), h2=_OpenSection(level=2, title=title))
        return replace(_close_h3(state), h3=_OpenSection(level=level, title=title))

    if _HR_RE.match(stripped.replace(" ", "")):
        return _close_text(_flush(state, base_path))

    if _LIST_ITEM_RE.match(line):
        return replace(state, pending=(*state.pending, line))

    if state.pending and line[:1] in (" ", "\t"):
        return replace(state, pending=(*state.pending, line))

    state = _flush(state, base_path)
    return _on_target(state, lambda s: s.add_text(render_wikilinks(stripped)))


def _finish(state: _ScanState, base_path: str) -> list[MarkdownSection]:
    state = _close_h2(_flush(state, base_path))
    sections = list(state.sections)
    preface = state.preface
    if preface is not None and (preface.blocks or preface.subsections):
        sections.insert(0, preface.build())
    return sections


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_markdown(text: str, base_path: str = "") -> MarkdownContent:
    """Parse ``text`` into a MarkdownContent tree.

    ``base_path`` is the document's own repository path; relative media
    paths are resolved against its directory.
    """
    metadata, lines = _split_frontmatter(text)
    media = _extract_media(lines, base_path)
    final = reduce(lambda state, line: _step(state, line, base_path), lines, _ScanState())

    return MarkdownContent(
        title=_find_title(lines),
        sections=_finish(final, base_path),
        images=media.images,
        videos=media.videos,
        animated_media=media.animated,
        wikilinks=media.wikilinks,
        metadata=metadata,
    )
