"""Application configuration settings."""

from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings


class DriveSettings(BaseSettings):
    """Google Drive and Sheets API configuration."""

    credentials_path: str = Field(default="./secret/credentials.json")
    team_drive_id: Optional[str] = Field(default=None)
    page_size: int = Field(default=100)
    rate_limit_calls: int = Field(default=100)
    rate_limit_window: float = Field(default=100.0)  # seconds

    class Config:
        env_prefix = "DRIVE_"


class CacheSettings(BaseSettings):
    """Local snapshot and asset store configuration."""

    snapshot_path: str = Field(default="./cache/cache.json")
    asset_dir: str = Field(default="./cache")
    # Base URL clients use to reach this service, embedded in rewritten <img src="">
    service_base_url: str = Field(default="http://localhost:8080/v1")
    asset_timeout_seconds: float = Field(default=30.0)

    class Config:
        env_prefix = "CACHE_"


class SyncSettings(BaseSettings):
    """Synchronization scheduling configuration."""

    throttle_threshold: int = Field(default=4)
    max_concurrent: Optional[int] = Field(default=None)
    interval_minutes: int = Field(default=0)  # 0 = periodic sync disabled

    class Config:
        env_prefix = "SYNC_"


class ServerSettings(BaseSettings):
    """HTTP serving layer configuration."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    api_version: int = Field(default=1)

    class Config:
        env_prefix = "SERVER_"


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="json")
    file_path: Optional[str] = Field(default="./logs/drivecms.log")

    class Config:
        env_prefix = "LOG_"


class AppSettings(BaseSettings):
    """Main application settings."""

    name: str = Field(default="Drive CMS")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")

    # Sub-settings
    drive: DriveSettings = DriveSettings()
    cache: CacheSettings = CacheSettings()
    sync: SyncSettings = SyncSettings()
    server: ServerSettings = ServerSettings()
    logging: LoggingSettings = LoggingSettings()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "allow"  # Allow extra fields in environment


# Global settings instance
settings = AppSettings()


def get_settings() -> AppSettings:
    """Get application settings."""
    return settings
