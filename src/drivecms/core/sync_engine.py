"""Core sync engine: incremental refresh of the resource cache from the remote store."""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..cache.versioned import CacheEntry, VersionedCache
from ..performance import ConcurrencyPolicy, ConcurrentExecutor
from ..remote.base import RemoteStore, ResourceDescriptor
from ..utils.logging import get_logger, log_async_execution_time
from .fetcher import ResourceFetcher


# Version committed for resources whose remote version is not an integer
UNKNOWN_VERSION = -1


@dataclass
class SyncResult:
    """Result of a sync run."""

    resources_listed: int = 0
    resources_stale: int = 0
    resources_fetched: int = 0
    resources_failed: int = 0
    sequential: bool = False
    sync_duration: Optional[float] = None

    @property
    def resources_skipped(self) -> int:
        """Listed resources that were already up to date."""
        return self.resources_listed - self.resources_stale


def is_stale(descriptor: ResourceDescriptor, entry: Optional[CacheEntry]) -> bool:
    """Whether ``descriptor`` must be fetched given the cached ``entry``."""
    if entry is None:
        return True
    remote_version = descriptor.parsed_version
    if remote_version is None:
        return True
    return entry.version < remote_version


class SyncOrchestrator:
    """Lists remote resources, fetches stale ones and commits them to the cache."""

    def __init__(
        self,
        store: RemoteStore,
        cache: VersionedCache,
        fetcher: ResourceFetcher,
        policy: Optional[ConcurrencyPolicy] = None
    ):
        """Initialize the orchestrator.

        Args:
            store: Remote store used for listing
            cache: Cache the results are committed to
            fetcher: Per-kind resource retrieval
            policy: Fetch concurrency policy (defaults to sequential above 4 stale)
        """
        self.store = store
        self.cache = cache
        self.fetcher = fetcher
        self.policy = policy or ConcurrencyPolicy()
        self.executor = ConcurrentExecutor()
        self.last_result: Optional[SyncResult] = None
        self.logger = get_logger(self.__class__.__name__)

    @log_async_execution_time
    async def run_sync(self, scope_id: Optional[str] = None) -> Dict[str, CacheEntry]:
        """Bring every stale resource up to date and return the cache mapping.

        Individual fetch failures are logged and leave that resource's entry
        as it was.

        Raises:
            RemoteListError: The listing failed; nothing was fetched
        """
        start_time = time.monotonic()
        result = SyncResult()

        # A listing failure aborts the run before anything is fetched
        descriptors = await self.store.list_all(scope_id)
        result.resources_listed = len(descriptors)

        # Diff against cached versions
        stale = self.find_stale(descriptors)
        result.resources_stale = len(stale)

        # Large backlogs run one at a time
        limit = self.policy.limit_for(len(stale))
        result.sequential = limit == 1
        if result.sequential:
            self.logger.info(
                "Fetching resources; throttling sequentially",
                stale=len(stale)
            )

        await self.executor.execute_batch(
            [self._fetch_task(descriptor, descriptors, result) for descriptor in stale],
            max_concurrent=limit
        )

        result.sync_duration = time.monotonic() - start_time
        self.last_result = result

        self.logger.info(
            "Sync completed",
            scope_id=scope_id,
            listed=result.resources_listed,
            stale=result.resources_stale,
            fetched=result.resources_fetched,
            failed=result.resources_failed,
            duration=f"{result.sync_duration:.2f}s"
        )

        return self.cache.entries()

    def find_stale(self, descriptors: List[ResourceDescriptor]) -> List[ResourceDescriptor]:
        """Descriptors needing a fetch, in listing order."""
        return [d for d in descriptors if is_stale(d, self.cache.get(d.id))]

    def _fetch_task(self, descriptor, descriptors, result):
        async def run():
            return await self.fetch_and_commit(descriptor, descriptors, result)
        return run

    async def fetch_and_commit(
        self,
        descriptor: ResourceDescriptor,
        descriptors: List[ResourceDescriptor],
        result: Optional[SyncResult] = None
    ) -> Optional[CacheEntry]:
        """Fetch one resource and store it.

        Returns:
            The committed entry, or on failure whatever entry was already cached
        """
        self.logger.info("Pulling latest version", resource_id=descriptor.id, name=descriptor.name)

        try:
            payload = await self.fetcher.fetch(descriptor, descriptors)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(
                "Pull failed",
                resource_id=descriptor.id,
                name=descriptor.name,
                kind=descriptor.kind.value,
                error=str(e)
            )
            if result is not None:
                result.resources_failed += 1
            return self.cache.get(descriptor.id)

        # Commit under the listed version, not whatever the fetch saw
        version = descriptor.parsed_version
        entry = self.cache.put(
            descriptor.id,
            version if version is not None else UNKNOWN_VERSION,
            payload
        )
        if result is not None:
            result.resources_fetched += 1
        return entry
