"""Remote content fetcher: cache → quota check → HTTP with retry → cache write.

All network I/O goes through a single ContentFetcher instance. It receives
the httpx.AsyncClient, cache, rate-limit tracker and retry strategy via
constructor injection; the server lifespan owns their lifecycle.
"""

from __future__ import annotations

import asyncio
import json
from datetime import timedelta
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx
import structlog
from pydantic import ValidationError

from sailcontent.errors import ContentFetchError, ErrorCode
from sailcontent.models.fetch import (
    DirectoryEntry,
    DirectoryFetchResult,
    FetchedFile,
    FetchResult,
    FileFailure,
    decode_text,
)
from sailcontent.ratelimit import is_quota_exhausted
from sailcontent.retry import RetriesExhaustedError

if TYPE_CHECKING:
    from sailcontent.config import ContentSettings, FetcherSettings
    from sailcontent.protocols import CacheProtocol
    from sailcontent.ratelimit import RateLimitStatus, RateLimitTracker
    from sailcontent.retry import RetryStrategy

log = structlog.get_logger()

CONTENT_EXTENSION = ".md"


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        limits=httpx.Limits(
            max_connections=10,
            max_keepalive_connections=5,
        ),
    )


def encode_path(path: str) -> str:
    """Percent-encode each ``/``-separated segment independently.

    Only ASCII alphanumerics and ``-._`` pass through, so Cyrillic names,
    spaces and reserved characters are always escaped and a segment can
    never introduce a directory boundary of its own.
    """
    return "/".join(quote(segment, safe="").replace("~", "%7E") for segment in path.split("/"))


def _should_retry(exc: Exception) -> bool:
    """Network errors and 5xx/408 responses are transient; everything else is final."""
    if not isinstance(exc, ContentFetchError):
        return False
    if exc.code == ErrorCode.NETWORK_ERROR:
        return True
    if exc.code == ErrorCode.FETCH_FAILED and exc.status_code is not None:
        return exc.status_code >= 500 or exc.status_code == 408
    return False


def _rate_limited_error(url: str, time_until_reset: float | None) -> ContentFetchError:
    return ContentFetchError(
        code=ErrorCode.RATE_LIMITED,
        message=f"API rate limit exhausted while fetching {url}",
        suggestion="Wait for the quota window to reset, or use cached content.",
        recoverable=True,
        time_until_reset=time_until_reset,
    )


class ContentFetcher:
    """Fetches repository content with caching, quota awareness and retries."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        cache: CacheProtocol,
        tracker: RateLimitTracker,
        retry: RetryStrategy,
        content: ContentSettings,
        settings: FetcherSettings,
        max_age: timedelta = timedelta(days=7),
    ) -> None:
        self._client = client
        self._cache = cache
        self._tracker = tracker
        self._retry = retry
        self._content = content
        self._settings = settings
        self._max_age = max_age

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    def raw_url(self, path: str) -> str:
        c = self._content
        base = c.raw_base_url.rstrip("/")
        return f"{base}/{c.owner}/{c.repo}/{c.branch}/{encode_path(path.strip('/'))}"

    def contents_api_url(self, folder: str) -> str:
        c = self._content
        base = c.api_base_url.rstrip("/")
        return f"{base}/repos/{c.owner}/{c.repo}/contents/{encode_path(folder.strip('/'))}"

    # ------------------------------------------------------------------
    # Single-file fetch
    # ------------------------------------------------------------------

    async def fetch(
        self,
        path: str,
        *,
        use_cache: bool = True,
        force_refresh: bool = False,
    ) -> FetchResult:
        """Fetch a text document by logical path.

        Returns a fresh result from cache or network, or a degraded
        ``stale_fallback`` when the quota is exhausted or the host is
        unreachable but a cached copy exists. Raises ContentFetchError
        otherwise.
        """
        return await self._fetch(
            path, use_cache=use_cache, force_refresh=force_refresh, require_text=True
        )

    async def fetch_bytes(
        self,
        path: str,
        *,
        use_cache: bool = True,
        force_refresh: bool = False,
    ) -> FetchResult:
        """Fetch a binary asset (e.g. an image) through the same pipeline."""
        return await self._fetch(
            path, use_cache=use_cache, force_refresh=force_refresh, require_text=False
        )

    async def read_cached(self, path: str) -> FetchResult:
        """Return the cached copy of ``path`` without touching the network."""
        entry = await self._cache.get(path, self._max_age)
        if entry is None:
            raise ContentFetchError(
                code=ErrorCode.CACHE_UNAVAILABLE,
                message=f"No cached copy of {path!r}",
                suggestion="Fetch the content while online first.",
                recoverable=True,
            )
        return FetchResult(
            path=path,
            data=entry.data,
            source="stale_fallback" if entry.stale else "cache",
            fetched_at=entry.last_fetched,
        )

    async def _fetch(
        self,
        path: str,
        *,
        use_cache: bool,
        force_refresh: bool,
        require_text: bool,
    ) -> FetchResult:
        bound = log.bind(path=path)

        # 1. Fresh cache hit: no network call, no quota check.
        if use_cache and not force_refresh:
            entry = await self._cache.get(path, self._max_age)
            if entry is not None and not entry.stale:
                bound.debug("cache_hit", stale=False)
                return FetchResult(
                    path=path, data=entry.data, source="cache", fetched_at=entry.last_fetched
                )

        url = self.raw_url(path)

        # 2. Quota gate (opt-in for raw content, which does not consume quota).
        if self._settings.quota_gate_raw_content:
            status = self._tracker.status()
            if status.is_limited:
                return await self._stale_fallback(path, url, status.time_until_reset)

        # 3–5. GET with retry; each response is fed to the tracker.
        try:
            response = await self._get_with_retry(url)
        except ContentFetchError as exc:
            if exc.code == ErrorCode.RATE_LIMITED:
                return await self._stale_fallback(path, url, exc.time_until_reset)
            if use_cache and _should_retry(exc):
                fallback = await self._offline_fallback(path, exc)
                if fallback is not None:
                    return fallback
            raise

        data = response.content
        if require_text:
            decode_text(path, data)

        # 6. Persist under the logical key.
        await self._cache.save(path, data)
        bound.info("fetch_complete", status_code=response.status_code, content_length=len(data))
        return FetchResult(path=path, data=data, source="network")

    async def _offline_fallback(self, path: str, error: ContentFetchError) -> FetchResult | None:
        """Serve any cached copy when the content host is unreachable."""
        entry = await self._cache.get(path, self._max_age)
        if entry is None:
            return None
        log.warning(
            "fetch_failed_serving_cache",
            path=path,
            code=error.code,
            cached_at=entry.last_fetched.isoformat(),
        )
        return FetchResult(
            path=path, data=entry.data, source="stale_fallback", fetched_at=entry.last_fetched
        )

    async def _stale_fallback(
        self, path: str, url: str, time_until_reset: float | None
    ) -> FetchResult:
        """Serve any cached copy while signalling the rate limit, or raise RATE_LIMITED."""
        entry = await self._cache.get(path, self._max_age)
        if entry is None:
            log.warning("rate_limited_no_cache", path=path, time_until_reset=time_until_reset)
            raise _rate_limited_error(url, time_until_reset)
        log.warning(
            "rate_limited_serving_cache",
            path=path,
            cached_at=entry.last_fetched.isoformat(),
            time_until_reset=time_until_reset,
        )
        return FetchResult(
            path=path,
            data=entry.data,
            source="stale_fallback",
            fetched_at=entry.last_fetched,
            time_until_reset=time_until_reset,
        )

    async def _get_with_retry(self, url: str) -> httpx.Response:
        try:
            return await self._retry.execute(lambda: self._get(url), _should_retry)
        except RetriesExhaustedError as exc:
            last = exc.last_error
            if isinstance(last, ContentFetchError):
                raise last from exc
            raise

    async def _get(self, url: str) -> httpx.Response:
        """One GET attempt. Raises ContentFetchError on any non-200 outcome."""
        try:
            response = await self._client.get(url)
        except httpx.InvalidURL as exc:
            raise ContentFetchError(
                code=ErrorCode.INVALID_URL,
                message=f"Invalid URL: {url}",
                suggestion="Check the content path and repository settings.",
                recoverable=False,
            ) from exc
        except httpx.HTTPError as exc:
            raise ContentFetchError(
                code=ErrorCode.NETWORK_ERROR,
                message=f"Network error fetching {url}: {exc}",
                suggestion="Check the network connection and try again.",
                recoverable=True,
            ) from exc

        self._tracker.observe(response)

        if response.status_code == 200:
            return response

        if is_quota_exhausted(response):
            raise _rate_limited_error(url, self._tracker.status().time_until_reset)

        raise ContentFetchError(
            code=ErrorCode.FETCH_FAILED,
            message=f"HTTP {response.status_code} fetching {url}",
            suggestion=(
                "The content does not exist at this path."
                if response.status_code == 404
                else "The content host may be temporarily unavailable."
            ),
            recoverable=response.status_code >= 500,
            status_code=response.status_code,
        )

    # ------------------------------------------------------------------
    # Directory listing and batch fetch
    # ------------------------------------------------------------------

    async def list_directory(self, folder: str) -> list[DirectoryEntry]:
        """List the markdown files of ``folder`` via the quota-bearing contents API."""
        status = self._tracker.status()
        url = self.contents_api_url(folder)
        if status.is_limited:
            log.warning("listing_rate_limited", folder=folder)
            raise _rate_limited_error(url, status.time_until_reset)

        response = await self._get_with_retry(url)
        try:
            payload = json.loads(response.content)
            if not isinstance(payload, list):
                raise ValueError("contents listing is not a JSON array")
            entries = [DirectoryEntry.model_validate(item) for item in payload]
        except (ValueError, ValidationError) as exc:
            raise ContentFetchError(
                code=ErrorCode.INVALID_DATA,
                message=f"Unexpected directory listing for {folder!r}: {exc}",
                suggestion="Check that the folder exists and is a directory.",
                recoverable=False,
            ) from exc

        files = [
            entry
            for entry in entries
            if entry.type == "file" and entry.name.lower().endswith(CONTENT_EXTENSION)
        ]
        log.info("directory_listed", folder=folder, entries=len(entries), files=len(files))
        return files

    async def list_and_fetch(
        self,
        folder: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> DirectoryFetchResult:
        """Fetch every markdown file in ``folder``, keeping partial results.

        Quota is re-checked before each file; once it is exhausted (or
        ``cancel`` is set) the remaining files are reported as skipped and
        the batch returns normally. Raises only if the listing fails, or if
        no file succeeded and at least one failed.
        """
        entries = await self.list_directory(folder)
        result = DirectoryFetchResult(folder=folder)
        first_error: ContentFetchError | None = None

        for index, entry in enumerate(entries):
            if index > 0:
                await asyncio.sleep(self._settings.batch_delay_seconds)

            if cancel is not None and cancel.is_set():
                result.cancelled = True
                result.skipped = [e.name for e in entries[index:]]
                log.info("batch_cancelled", folder=folder, fetched=len(result.records))
                break

            status: RateLimitStatus = self._tracker.status()
            if status.is_limited:
                self._stop_rate_limited(result, entries[index:], status.time_until_reset)
                break

            path = entry.path or f"{folder.strip('/')}/{entry.name}"
            try:
                fetched = await self.fetch(path, use_cache=False)
            except ContentFetchError as exc:
                if exc.code == ErrorCode.RATE_LIMITED:
                    self._stop_rate_limited(result, entries[index:], exc.time_until_reset)
                    break
                log.warning("batch_file_failed", folder=folder, name=entry.name, code=exc.code)
                first_error = first_error or exc
                result.failure_count += 1
                if len(result.failures) < self._settings.max_reported_failures:
                    result.failures.append(
                        FileFailure(name=entry.name, code=exc.code, message=exc.message)
                    )
                continue

            result.records.append(
                FetchedFile(
                    name=entry.name, path=path, content=fetched.content, source=fetched.source
                )
            )
            if fetched.degraded:
                self._stop_rate_limited(result, entries[index + 1 :], fetched.time_until_reset)
                break

        if not result.records and first_error is not None:
            raise ContentFetchError(
                code=first_error.code,
                message=(
                    f"All {result.failure_count} file(s) in {folder!r} failed: "
                    f"{first_error.message}"
                ),
                suggestion=first_error.suggestion,
                recoverable=first_error.recoverable,
                status_code=first_error.status_code,
            ) from first_error

        log.info(
            "batch_complete",
            folder=folder,
            fetched=len(result.records),
            failed=result.failure_count,
            skipped=len(result.skipped),
        )
        return result

    def _stop_rate_limited(
        self,
        result: DirectoryFetchResult,
        remaining: list[DirectoryEntry],
        time_until_reset: float | None,
    ) -> None:
        result.rate_limited = True
        result.time_until_reset = time_until_reset
        result.skipped = [e.name for e in remaining]
        log.warning(
            "batch_stopped",
            reason="rate_limited",
            folder=result.folder,
            fetched=len(result.records),
            skipped=len(result.skipped),
        )
