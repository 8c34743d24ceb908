"""Resource and asset caches."""

from .versioned import (
    CacheEntry,
    VersionedCache,
    managed_cache,
    DurableStoreReadError,
    DurableStoreWriteError
)
from .assets import AssetCache, AssetDownloadError, derive_key

__all__ = [
    "CacheEntry",
    "VersionedCache",
    "managed_cache",
    "DurableStoreReadError",
    "DurableStoreWriteError",
    "AssetCache",
    "AssetDownloadError",
    "derive_key",
]
