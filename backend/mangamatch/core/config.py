"""Application configuration using Pydantic Settings."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


def _default_data_dir() -> Path:
    """Resolve the data directory used when nothing else is configured."""
    data_dir_env = os.environ.get("MANGAMATCH_DATA_DIR", "")
    if data_dir_env:
        return Path(data_dir_env)
    # __file__ is backend/mangamatch/core/config.py, so go up to backend/ and add data
    return Path(__file__).parent.parent.parent / "data"


def json_config_settings_source(
    settings: BaseSettings | None = None,
) -> dict[str, Any]:  # noqa: ANN001
    """Load settings from settings.json file.

    This source has lowest priority - env vars will override JSON values.
    Only the flat top-level keys are returned; nested sections such as
    ``matching`` are read separately by ``get_matching_config``.

    Args:
        settings: The Settings class (not instance) being constructed.

    Returns:
        Dictionary with setting keys (lowercase) and values from JSON file.
    """
    settings_file = _default_data_dir() / "config" / "settings.json"

    if not settings_file.exists():
        return {}

    try:
        with settings_file.open("r") as f:
            data = json.load(f)
    except Exception:
        return {}

    if not isinstance(data, dict):
        return {}

    # Nested sections belong to other config loaders
    return {k.lower(): v for k, v in data.items() if not isinstance(v, dict)}


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from:
    1. JSON file (settings.json in config directory) - lowest priority
    2. .env file
    3. Environment variables - highest priority (override JSON/.env)

    All settings are prefixed with MANGAMATCH_ (e.g., MANGAMATCH_ENV=production).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MANGAMATCH_",
        case_sensitive=False,
        extra="ignore",  # Ignore extra environment variables
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources - env vars override the JSON file.

        Priority (lowest to highest):
        1. JSON file (settings.json)
        2. .env file
        3. Environment variables
        4. Init settings (values passed to Settings()) - highest priority

        Sources are returned highest priority first.
        """
        return (  # type: ignore[return-value]
            init_settings,
            env_settings,
            dotenv_settings,
            json_config_settings_source,
        )

    # Application
    env: Literal["development", "production", "testing"] = Field(
        default="development",
        description="Application environment (development, production, testing)",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    data_dir: Path = Field(
        default_factory=lambda: _default_data_dir().resolve(),
        description="Base directory for all application data (config, cache, results, logs)",
    )

    # Catalog API
    anilist_api_url: str = Field(
        default="https://graphql.anilist.co",
        description="GraphQL endpoint of the primary catalog",
    )
    requests_per_minute: int = Field(
        default=28,
        ge=1,
        description="Request budget per minute for the primary catalog",
    )
    safety_delay_seconds: float = Field(
        default=0.05,
        ge=0.0,
        description="Extra spacing added on top of the per-request interval",
    )
    http_timeout: float = Field(
        default=15.0,
        gt=0,
        description="Timeout in seconds for catalog HTTP requests",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries on HTTP 429 and network errors",
    )

    # Cache
    cache_ttl_hours: float = Field(
        default=24.0,
        gt=0,
        description="Validity window for cached search results, in hours",
    )

    @property
    def config_dir(self) -> Path:
        """Directory for configuration files (settings.json, etc.)."""
        return self.data_dir / "config"

    @property
    def cache_dir(self) -> Path:
        """Directory for the persisted cache snapshot."""
        return self.data_dir / "cache"

    @property
    def results_dir(self) -> Path:
        """Directory for persisted match results and pending entries."""
        return self.data_dir / "results"

    @property
    def logs_dir(self) -> Path:
        """Directory for log files (if file logging is enabled)."""
        return self.data_dir / "logs"

    @property
    def cache_ttl_seconds(self) -> float:
        """Cache TTL converted to seconds."""
        return self.cache_ttl_hours * 3600

    @property
    def is_debug(self) -> bool:
        """Check if running in debug/development mode."""
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env == "production"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.env == "testing"

    def model_post_init(self, __context: object) -> None:
        """Post-initialization: create data directories if they don't exist."""
        self.data_dir = self.data_dir.resolve()

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings instance.

    Creates and caches the settings instance on first call.
    Subsequent calls return the cached instance.

    Returns:
        Settings instance
    """
    return Settings()


def reload_settings() -> Settings:
    """Reload settings from all sources (JSON, .env, env vars).

    Clears the cache and creates a new Settings instance.

    Returns:
        New Settings instance
    """
    get_settings.cache_clear()
    return get_settings()


def get_settings_file_path() -> Path:
    """Get path to settings.json file."""
    return get_settings().config_dir / "settings.json"
