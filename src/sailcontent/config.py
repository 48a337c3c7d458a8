"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (SAILCONTENT__RETRY__MAX_ATTEMPTS=5)
  2. sailcontent.yaml       (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal
from urllib.parse import urlparse

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_CACHE_DIR = str(Path(platformdirs.user_cache_dir("sailcontent")) / "content")


def _find_config_file() -> str | None:
    """Return the path of the first sailcontent.yaml found, or None."""
    candidates = [
        Path("sailcontent.yaml"),
        Path(platformdirs.user_config_dir("sailcontent")) / "sailcontent.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ContentSettings(BaseModel):
    raw_base_url: str = "https://raw.githubusercontent.com"
    api_base_url: str = "https://api.github.com"
    owner: str = "dikology"
    repo: str = "captains-locker"
    branch: str = "master"

    @property
    def quota_host(self) -> str:
        """Host whose responses carry (and consume) the API quota."""
        return urlparse(self.api_base_url).hostname or ""


class CacheSettings(BaseModel):
    cache_dir: str = _DEFAULT_CACHE_DIR
    max_age_days: float = 7
    cleanup_interval_hours: int = 6


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter: bool = True


class RateLimitSettings(BaseModel):
    # GitHub's quota for unauthenticated API clients
    initial_remaining: int = 60
    warning_threshold: int = 10
    default_reset_seconds: float = 3600


class FetcherSettings(BaseModel):
    timeout_seconds: float = 30.0
    batch_delay_seconds: float = 0.1
    max_reported_failures: int = 20
    # Raw-content downloads never consume API quota, so they are not gated by default.
    quota_gate_raw_content: bool = False
    user_agent: str = "sailcontent/1.0"


class DeckSettings(BaseModel):
    folder: str
    display_name: str
    description: str | None = None


_DEFAULT_DECKS = [
    DeckSettings(folder="звуковые сигналы", display_name="Sound signals"),
    DeckSettings(folder="навигационные огни", display_name="Navigation lights"),
    DeckSettings(folder="МППСС", display_name="COLREGs"),
]


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: SAILCONTENT__FETCHER__TIMEOUT_SECONDS=10
        env_prefix="SAILCONTENT__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    content: ContentSettings = ContentSettings()
    cache: CacheSettings = CacheSettings()
    retry: RetrySettings = RetrySettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    fetcher: FetcherSettings = FetcherSettings()
    decks: list[DeckSettings] = _DEFAULT_DECKS
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
