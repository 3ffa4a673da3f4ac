"""Configuration and settings management."""

from doma_studio.config.constants import BestOf, Limits, Scoring
from doma_studio.config.logging import get_logger, setup_logging
from doma_studio.config.settings import Settings, clear_settings_cache, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "clear_settings_cache",
    "setup_logging",
    "get_logger",
    "Limits",
    "Scoring",
    "BestOf",
]
