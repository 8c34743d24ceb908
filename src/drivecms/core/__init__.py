"""Core sync logic package."""

from .fetcher import (
    ResourceFetcher,
    FetchStrategy,
    ContainerStrategy,
    TableStrategy,
    RichTextStrategy,
    rows_to_records
)
from .sync_engine import SyncOrchestrator, SyncResult, is_stale, UNKNOWN_VERSION

__all__ = [
    "ResourceFetcher",
    "FetchStrategy",
    "ContainerStrategy",
    "TableStrategy",
    "RichTextStrategy",
    "rows_to_records",
    "SyncOrchestrator",
    "SyncResult",
    "is_stale",
    "UNKNOWN_VERSION"
]
