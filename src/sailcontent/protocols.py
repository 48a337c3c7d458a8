"""Protocol interfaces for swappable components.

The fetcher, deck ingestion and tool handlers reference these protocols, not
the concrete implementations, so tests can substitute in-memory fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    import asyncio
    from datetime import datetime, timedelta

    from sailcontent.models.cache import CacheEntry
    from sailcontent.models.fetch import DirectoryEntry, DirectoryFetchResult, FetchResult


class CacheProtocol(Protocol):
    """Interface for the content cache backend."""

    async def save(self, key: str, data: bytes, *, fetched_at: datetime | None = None) -> None: ...

    async def load(self, key: str) -> bytes | None: ...

    async def get(self, key: str, max_age: timedelta = ...) -> CacheEntry | None: ...

    async def is_stale(self, key: str, max_age: timedelta = ...) -> bool: ...

    async def clear(self) -> None: ...

    async def clear_stale(self, max_age: timedelta = ...) -> int: ...


class FetcherProtocol(Protocol):
    """Interface for the remote content fetcher."""

    async def fetch(
        self, path: str, *, use_cache: bool = True, force_refresh: bool = False
    ) -> FetchResult: ...

    async def list_directory(self, folder: str) -> list[DirectoryEntry]: ...

    async def list_and_fetch(
        self, folder: str, *, cancel: asyncio.Event | None = None
    ) -> DirectoryFetchResult: ...
