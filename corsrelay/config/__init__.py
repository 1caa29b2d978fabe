"""
corsrelay Configuration Module
Centralized configuration management using pydantic-settings.
"""

from corsrelay.config.settings import (
    Settings,
    ServerSettings,
    RelaySettings,
    RateLimitSettings,
    HttpSettings,
    get_settings,
    reload_settings,
)

__all__ = [
    "Settings",
    "ServerSettings",
    "RelaySettings",
    "RateLimitSettings",
    "HttpSettings",
    "get_settings",
    "reload_settings",
]
