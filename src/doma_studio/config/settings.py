"""Application settings loaded from environment variables and .env files."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import Limits

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """Runtime configuration for doma-studio.

    Values come from the environment (e.g. ``DOMA_DATA_DIR``) or a ``.env``
    file in the working directory.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    doma_data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".doma-studio",
        description="Directory holding the persisted template blobs",
    )
    doma_log_level: str = Field(default="INFO", description="Root log level")
    doma_search_limit: int = Field(
        default=Limits.SEARCH_DEFAULT, ge=1, description="Default number of search results"
    )
    doma_seed_presets: bool = Field(
        default=True, description="Seed built-in presets when the collection is empty"
    )

    @field_validator("doma_log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"Invalid log level '{v}', expected one of {', '.join(_LOG_LEVELS)}")
        return level

    @property
    def templates_dir(self) -> Path:
        """Directory for the template blob store."""
        return self.doma_data_dir.expanduser() / "templates"


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def clear_settings_cache() -> None:
    """Reset the settings cache (used by tests and after env changes)."""
    get_settings.cache_clear()
