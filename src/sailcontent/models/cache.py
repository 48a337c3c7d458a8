from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CacheEntry(BaseModel):
    """A cached blob and the time it was last fetched from the network."""

    key: str  # Logical content path, host-neutral
    data: bytes
    last_fetched: datetime
    stale: bool = False


class CacheMetadata(BaseModel):
    """JSON sidecar written next to each cached blob: ``{"lastFetched": <ISO8601>}``."""

    model_config = ConfigDict(populate_by_name=True)

    last_fetched: datetime = Field(alias="lastFetched")
