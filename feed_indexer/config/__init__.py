"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import BrowserSettings, GlobalConfig, ScrollSettings, SearchDefaults, SortMode

__all__ = [
    "BrowserSettings",
    "ConfigLocator",
    "ConfigRepository",
    "GlobalConfig",
    "ScrollSettings",
    "SearchDefaults",
    "SortMode",
]
