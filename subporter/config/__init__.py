"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import BrowserConfig, ExtractionConfig, GlobalConfig, Settings

__all__ = [
    "BrowserConfig",
    "ConfigLocator",
    "ConfigRepository",
    "ExtractionConfig",
    "GlobalConfig",
    "Settings",
]
