from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict

from sailcontent.errors import ContentFetchError, ErrorCode

if TYPE_CHECKING:
    from datetime import datetime

FetchSource = Literal["network", "cache", "stale_fallback"]


def decode_text(path: str, data: bytes) -> str:
    """Decode fetched bytes as UTF-8, raising INVALID_DATA otherwise."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ContentFetchError(
            code=ErrorCode.INVALID_DATA,
            message=f"Content at {path!r} is not valid UTF-8",
            suggestion="Fetch binary assets with fetch_bytes instead.",
            recoverable=False,
        ) from exc


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a successful fetch.

    ``source`` distinguishes fresh content (``network`` or a fresh ``cache``
    hit) from a degraded ``stale_fallback`` served because the quota is
    exhausted or the content host is unreachable. Failures are raised as
    ContentFetchError instead.
    """

    path: str
    data: bytes
    source: FetchSource
    fetched_at: datetime | None = None
    time_until_reset: float | None = None

    @property
    def degraded(self) -> bool:
        return self.source == "stale_fallback"

    @property
    def content(self) -> str:
        return decode_text(self.path, self.data)


class DirectoryEntry(BaseModel):
    """One element of the GitHub contents API listing."""

    model_config = ConfigDict(extra="ignore")

    name: str
    path: str | None = None
    download_url: str | None = None
    type: str = "file"


class FetchedFile(BaseModel):
    name: str
    path: str
    content: str
    source: FetchSource


class FileFailure(BaseModel):
    name: str
    code: ErrorCode
    message: str


@dataclass
class DirectoryFetchResult:
    """Partial-success result of fetching every markdown file in a folder.

    ``skipped`` lists files never attempted because the quota ran out or the
    batch was cancelled; ``failures`` is capped, ``failure_count`` is not.
    """

    folder: str
    records: list[FetchedFile] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)
    failure_count: int = 0
    skipped: list[str] = field(default_factory=list)
    rate_limited: bool = False
    cancelled: bool = False
    time_until_reset: float | None = None

    @property
    def complete(self) -> bool:
        return not (self.failure_count or self.skipped)
