"""Configuration package for Drive CMS."""

from .settings import (
    DriveSettings,
    CacheSettings,
    SyncSettings,
    ServerSettings,
    LoggingSettings,
    AppSettings,
    get_settings
)

__all__ = [
    "DriveSettings",
    "CacheSettings",
    "SyncSettings",
    "ServerSettings",
    "LoggingSettings",
    "AppSettings",
    "get_settings"
]
