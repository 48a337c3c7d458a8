"""On-disk content cache with staleness metadata.

Each entry is a data blob plus a JSON sidecar ``{"lastFetched": ISO8601}``,
both written with atomic replace semantics. The sidecar is written last and
acts as the commit marker: an entry missing either file has no usable
``lastFetched`` and is always considered stale.

Writes to the same key are serialised with a per-key asyncio lock; reads
take no lock and only ever observe a complete old or new file.

Read and write failures are logged with ``exc_info=True`` and degrade to a
cache miss / no-op, so a broken cache directory never prevents fetched
content from reaching the caller. Only ``clear()`` raises.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import shutil
import weakref
from contextlib import suppress
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from sailcontent.errors import ContentFetchError, ErrorCode
from sailcontent.models.cache import CacheEntry, CacheMetadata

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

log = structlog.get_logger()

DEFAULT_MAX_AGE = timedelta(days=7)

_DATA_SUFFIX = ".data"
_META_SUFFIX = ".meta.json"
_MAX_NAME_BYTES = 200


def sanitize_key(key: str) -> str:
    """Map a logical key to a single safe file name.

    Path separators (and ``%`` itself) are percent-escaped so distinct keys
    never collide; overlong names are shortened with a SHA-256 suffix.
    """
    name = (
        key.replace("%", "%25").replace("/", "%2F").replace("\\", "%5C").replace(":", "%3A")
    )
    if len(name.encode("utf-8")) > _MAX_NAME_BYTES:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
        name = f"{name[:60]}-{digest}"
    return name


class ContentCache:
    """Filesystem cache implementing CacheProtocol."""

    def __init__(self, root: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self.root = root
        self._clock = clock or (lambda: datetime.now(UTC))
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def init_dir(self) -> None:
        """Create the cache directory. Called once at startup."""
        self.root.mkdir(parents=True, exist_ok=True)

    def _paths(self, key: str) -> tuple[Path, Path]:
        name = sanitize_key(key)
        return self.root / f"{name}{_DATA_SUFFIX}", self.root / f"{name}{_META_SUFFIX}"

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(self, key: str, data: bytes, *, fetched_at: datetime | None = None) -> None:
        """Store ``data`` under ``key``. Non-fatal on failure."""
        stamp = fetched_at or self._clock()
        lock = self._lock_for(key)
        async with lock:
            try:
                await asyncio.to_thread(self._write_entry, key, data, stamp)
            except OSError:
                log.warning("cache_write_error", key=key, exc_info=True)

    def _write_entry(self, key: str, data: bytes, fetched_at: datetime) -> None:
        data_path, meta_path = self._paths(key)
        self.root.mkdir(parents=True, exist_ok=True)
        meta = CacheMetadata(last_fetched=fetched_at).model_dump_json(by_alias=True)
        _atomic_write(data_path, data)
        _atomic_write(meta_path, meta.encode("utf-8"))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self, key: str) -> bytes | None:
        """Return the cached bytes, or ``None`` on a miss or read failure."""
        data_path, _ = self._paths(key)
        try:
            return await asyncio.to_thread(data_path.read_bytes)
        except FileNotFoundError:
            return None
        except OSError:
            log.warning("cache_read_error", key=key, exc_info=True)
            return None

    async def exists(self, key: str) -> bool:
        data_path, _ = self._paths(key)
        return await asyncio.to_thread(data_path.is_file)

    async def last_fetched(self, key: str) -> datetime | None:
        """When ``key`` was last fetched; ``None`` unless both files are present."""
        data_path, meta_path = self._paths(key)
        return await asyncio.to_thread(self._read_stamp, data_path, meta_path)

    def _read_stamp(self, data_path: Path, meta_path: Path) -> datetime | None:
        if not data_path.is_file():
            return None
        try:
            meta = CacheMetadata.model_validate_json(meta_path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, ValidationError):
            log.warning("cache_metadata_read_error", path=str(meta_path), exc_info=True)
            return None
        stamp = meta.last_fetched
        return stamp if stamp.tzinfo else stamp.replace(tzinfo=UTC)

    async def is_stale(self, key: str, max_age: timedelta = DEFAULT_MAX_AGE) -> bool:
        stamp = await self.last_fetched(key)
        if stamp is None:
            return True
        return self._clock() - stamp > max_age

    async def get(self, key: str, max_age: timedelta = DEFAULT_MAX_AGE) -> CacheEntry | None:
        """Read blob and metadata together. Entries without metadata come back stale."""
        data = await self.load(key)
        if data is None:
            return None
        stamp = await self.last_fetched(key)
        stale = stamp is None or self._clock() - stamp > max_age
        return CacheEntry(
            key=key,
            data=data,
            last_fetched=stamp or datetime.fromtimestamp(0, tz=UTC),
            stale=stale,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        """Remove every entry. Raises CACHE_UNAVAILABLE if the directory cannot be reset."""
        try:
            await asyncio.to_thread(self._reset_dir)
        except OSError as exc:
            raise ContentFetchError(
                code=ErrorCode.CACHE_UNAVAILABLE,
                message=f"Could not clear content cache at {self.root}: {exc}",
                suggestion="Check that the cache directory is writable.",
                recoverable=True,
            ) from exc
        log.info("cache_cleared", path=str(self.root))

    def _reset_dir(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
        self.root.mkdir(parents=True, exist_ok=True)

    async def clear_stale(self, max_age: timedelta = DEFAULT_MAX_AGE) -> int:
        """Delete entries older than ``max_age`` (and half-written entries).

        Returns the number of entries removed. Non-fatal on failure.
        """
        try:
            removed = await asyncio.to_thread(self._sweep, self._clock() - max_age)
        except OSError:
            log.warning("cache_cleanup_error", exc_info=True)
            return 0
        log.info("cache_cleanup_complete", removed=removed)
        return removed

    def _sweep(self, cutoff: datetime) -> int:
        if not self.root.is_dir():
            return 0
        names: set[str] = set()
        for path in self.root.iterdir():
            if path.name.endswith(_META_SUFFIX):
                names.add(path.name[: -len(_META_SUFFIX)])
            elif path.name.endswith(_DATA_SUFFIX):
                names.add(path.name[: -len(_DATA_SUFFIX)])

        removed = 0
        for name in names:
            data_path = self.root / f"{name}{_DATA_SUFFIX}"
            meta_path = self.root / f"{name}{_META_SUFFIX}"
            stamp = self._read_stamp(data_path, meta_path)
            if stamp is not None and stamp >= cutoff:
                continue
            for path in (data_path, meta_path):
                path.unlink(missing_ok=True)
            removed += 1
        return removed


def _atomic_write(path: Path, data: bytes) -> None:
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with tmp_path.open("wb") as file_obj:
            file_obj.write(data)
            file_obj.flush()
            os.fsync(file_obj.fileno())
        os.replace(tmp_path, path)
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)
