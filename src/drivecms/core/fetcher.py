"""Per-kind retrieval strategies producing normalized cache payloads."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from ..cache.assets import AssetCache
from ..performance import BackgroundTaskQueue
from ..remote.base import RemoteStore, ResourceDescriptor, ResourceKind, UnsupportedResourceKind
from ..utils.logging import get_logger


def rows_to_records(values: Sequence[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Fold sheet rows into records keyed by the header row.

    The first row is the header and is not included in the output. Cells
    past the end of the header are keyed by their column index.
    """
    if not values:
        return []

    header = [str(cell) for cell in values[0]]
    records = []
    for row in values[1:]:
        record = {}
        for index, cell in enumerate(row):
            key = header[index] if index < len(header) else str(index)
            record[key] = cell
        records.append(record)
    return records


class FetchStrategy(ABC):
    """Retrieval of one resource kind."""

    def __init__(self, store: RemoteStore):
        self.store = store
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def fetch(
        self,
        descriptor: ResourceDescriptor,
        siblings: Sequence[ResourceDescriptor]
    ) -> Any:
        pass


class ContainerStrategy(FetchStrategy):
    """Folders: children are taken from the listing that is already in hand."""

    async def fetch(self, descriptor, siblings):
        children = [s for s in siblings if descriptor.id in s.parents]
        children.sort(key=lambda s: s.name)
        return [child.to_dict() for child in children]


class TableStrategy(FetchStrategy):
    """Spreadsheets: every sheet as a list of row records."""

    async def fetch(self, descriptor, siblings):
        sheets = await self.store.fetch_table(descriptor.id)

        output: Dict[str, List[Dict[str, Any]]] = {}
        for sheet_name, values in sheets:
            try:
                output[sheet_name] = rows_to_records(values)
            except (TypeError, ValueError) as e:
                self.logger.warning(
                    "Malformed sheet, storing it empty",
                    resource_id=descriptor.id,
                    sheet=sheet_name,
                    error=str(e)
                )
                output[sheet_name] = []
        return output


class RichTextStrategy(FetchStrategy):
    """Documents: exported HTML with image URLs pointed at the local asset route."""

    def __init__(self, store: RemoteStore, asset_cache: AssetCache, task_queue: BackgroundTaskQueue):
        super().__init__(store)
        self.asset_cache = asset_cache
        self.task_queue = task_queue

    async def fetch(self, descriptor, siblings):
        html = await self.store.fetch_rich_text(descriptor.id)
        rewritten = self.asset_cache.rewrite_urls(html)

        queued = self.asset_cache.warm(html, self.task_queue)
        if queued:
            self.logger.debug("Queued image caching", resource_id=descriptor.id, images=queued)

        return {"html": rewritten}


class ResourceFetcher:
    """Dispatches a resource to the strategy registered for its kind."""

    def __init__(
        self,
        store: RemoteStore,
        asset_cache: AssetCache,
        task_queue: Optional[BackgroundTaskQueue] = None
    ):
        self.store = store
        self.asset_cache = asset_cache
        self.task_queue = task_queue or BackgroundTaskQueue("assets")
        self.logger = get_logger(self.__class__.__name__)

        self._strategies: Dict[ResourceKind, FetchStrategy] = {
            ResourceKind.CONTAINER: ContainerStrategy(store),
            ResourceKind.STRUCTURED_TABLE: TableStrategy(store),
            ResourceKind.RICH_TEXT: RichTextStrategy(store, asset_cache, self.task_queue),
        }

    async def fetch(
        self,
        descriptor: ResourceDescriptor,
        siblings: Sequence[ResourceDescriptor] = ()
    ) -> Any:
        """Retrieve and normalize one resource.

        Raises:
            UnsupportedResourceKind: No strategy for ``descriptor.kind``
            RemoteFetchError: The remote store call failed
        """
        strategy = self._strategies.get(descriptor.kind)
        if strategy is None:
            raise UnsupportedResourceKind(descriptor.kind, descriptor.mime_type)
        return await strategy.fetch(descriptor, siblings)

    def register_strategy(self, kind: ResourceKind, strategy: FetchStrategy):
        """Register or replace the strategy for a kind."""
        self._strategies[kind] = strategy

    @property
    def supported_kinds(self) -> List[ResourceKind]:
        return list(self._strategies.keys())
