"""Tests for the sync orchestrator."""

import asyncio
from dataclasses import replace

import pytest

from drivecms.cache import AssetCache, VersionedCache
from drivecms.core import ResourceFetcher, SyncOrchestrator, SyncResult, is_stale, UNKNOWN_VERSION
from drivecms.cache import CacheEntry
from drivecms.performance import BackgroundTaskQueue, ConcurrencyPolicy
from drivecms.remote import ResourceKind, RemoteListError

from conftest import descriptor


class InstrumentedFetcher:
    """Fetcher that records overlap and commit order."""

    def __init__(self, cache, fail_ids=(), delay=0.01):
        self.cache = cache
        self.fail_ids = set(fail_ids)
        self.delay = delay
        self.started = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.committed_before_start = []

    async def fetch(self, descriptor, siblings=()):
        # Ids already committed when this call starts
        self.committed_before_start.append(
            {d.id for d in self.started if self.cache.get(d.id) is not None}
        )
        self.started.append(descriptor)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if descriptor.id in self.fail_ids:
                raise RuntimeError(f"fetch failed for {descriptor.id}")
            return {"html": descriptor.id}
        finally:
            self.in_flight -= 1


def docs(count, version="1"):
    return [descriptor(f"doc_{i}", ResourceKind.RICH_TEXT, version=version) for i in range(count)]


def make_orchestrator(store, cache, fetcher, policy=None):
    return SyncOrchestrator(store, cache, fetcher, policy)


class TestStaleness:
    """Stale detection."""

    def test_missing_entry_is_stale(self):
        assert is_stale(descriptor("a", ResourceKind.RICH_TEXT, version="1"), None)

    def test_strictly_lower_version_is_stale(self):
        entry = CacheEntry(4, {})
        assert is_stale(descriptor("a", ResourceKind.RICH_TEXT, version="5"), entry)
        assert not is_stale(descriptor("a", ResourceKind.RICH_TEXT, version="4"), entry)
        assert not is_stale(descriptor("a", ResourceKind.RICH_TEXT, version="3"), entry)

    def test_unparseable_version_is_always_stale(self):
        entry = CacheEntry(100, {})
        assert is_stale(descriptor("a", ResourceKind.RICH_TEXT, version="abc"), entry)
        assert is_stale(descriptor("a", ResourceKind.RICH_TEXT, version=None), entry)


class TestSyncOrchestrator:
    """Full List/Diff/Schedule/Fetch runs."""

    def make_real(self, store, tmp_path, cache=None):
        cache = cache or VersionedCache(tmp_path / "cache.json")
        self.queue = BackgroundTaskQueue("test")
        assets = AssetCache(tmp_path / "assets", "http://localhost/v1")
        assets.cache_asset = _noop_cache_asset
        fetcher = ResourceFetcher(store, assets, self.queue)
        return make_orchestrator(store, cache, fetcher), cache

    @pytest.mark.asyncio
    async def test_first_sync_creates_entries_at_remote_version(self, store, tmp_path):
        orchestrator, cache = self.make_real(store, tmp_path)

        entries = await orchestrator.run_sync()

        assert {rid: e.version for rid, e in entries.items()} == {
            "folder_1": 3, "sheet_1": 7, "doc_1": 12
        }
        assert entries["sheet_1"].payload["Hours"] == [{"day": "mon", "open": "9"}]
        assert "/getImage?id=abc123?sz=w100" in entries["doc_1"].payload["html"]
        assert orchestrator.last_result.resources_fetched == 3
        await self.queue.drain(timeout=5)

    @pytest.mark.asyncio
    async def test_up_to_date_resources_are_not_fetched(self, store, tmp_path):
        cache = VersionedCache()
        cache.put("sheet_1", 7, {"old": []})
        cache.put("doc_1", 20, {"html": "newer"})
        orchestrator, _ = self.make_real(store, tmp_path, cache)

        entries = await orchestrator.run_sync()

        assert store.fetched_ids() == []
        assert entries["sheet_1"].payload == {"old": []}
        assert entries["doc_1"].version == 20
        assert orchestrator.last_result.resources_skipped == 2

    @pytest.mark.asyncio
    async def test_newer_remote_version_is_refetched(self, store, tmp_path):
        cache = VersionedCache()
        cache.put("sheet_1", 6, {"old": []})
        orchestrator, _ = self.make_real(store, tmp_path, cache)

        entries = await orchestrator.run_sync()

        assert "sheet_1" in store.fetched_ids()
        assert entries["sheet_1"].version == 7
        assert "Food" in entries["sheet_1"].payload

    @pytest.mark.asyncio
    async def test_second_run_leaves_snapshot_identical(self, store, tmp_path):
        orchestrator, cache = self.make_real(store, tmp_path)

        await orchestrator.run_sync()
        cache.snapshot()
        first = (tmp_path / "cache.json").read_bytes()
        fetched_after_first = len(store.fetched_ids())

        await orchestrator.run_sync()
        cache.snapshot()
        second = (tmp_path / "cache.json").read_bytes()

        assert first == second
        assert len(store.fetched_ids()) == fetched_after_first
        await self.queue.drain(timeout=5)

    @pytest.mark.asyncio
    async def test_listing_failure_fails_run_and_keeps_cache(self, store, tmp_path):
        cache = VersionedCache()
        cache.put("doc_1", 1, {"html": "kept"})
        store.list_error = RemoteListError("listing unavailable")
        orchestrator, _ = self.make_real(store, tmp_path, cache)

        with pytest.raises(RemoteListError):
            await orchestrator.run_sync()

        assert cache.to_dict() == {"doc_1": {"version": 1, "payload": {"html": "kept"}}}
        assert store.fetched_ids() == []

    @pytest.mark.asyncio
    async def test_fetch_failure_is_isolated(self, store, tmp_path):
        cache = VersionedCache()
        cache.put("sheet_1", 2, {"old": []})
        store.descriptors = [replace(d, version="99") for d in store.descriptors]
        store.failing.add("sheet_1")
        orchestrator, _ = self.make_real(store, tmp_path, cache)

        entries = await orchestrator.run_sync()

        assert entries["sheet_1"] == CacheEntry(2, {"old": []})
        assert entries["doc_1"].version == 99
        assert entries["folder_1"].version == 99
        assert orchestrator.last_result.resources_failed == 1
        await self.queue.drain(timeout=5)

    @pytest.mark.asyncio
    async def test_fetch_and_commit_resolves_with_previous_entry(self, store, tmp_path):
        cache = VersionedCache()
        previous = cache.put("doc_1", 1, {"html": "old"})
        store.failing.add("doc_1")
        orchestrator, _ = self.make_real(store, tmp_path, cache)

        entry = await orchestrator.fetch_and_commit(store.descriptors[2], store.descriptors)

        assert entry is previous

    @pytest.mark.asyncio
    async def test_fetch_failure_without_prior_entry_leaves_absence(self, store, tmp_path):
        store.failing.add("doc_1")
        orchestrator, cache = self.make_real(store, tmp_path)

        entries = await orchestrator.run_sync()

        assert "doc_1" not in entries
        assert cache.get("doc_1") is None

    @pytest.mark.asyncio
    async def test_unrecognized_kind_is_isolated(self, store, tmp_path):
        store.descriptors.append(descriptor("pdf_1", ResourceKind.UNRECOGNIZED, version="1"))
        orchestrator, cache = self.make_real(store, tmp_path)

        entries = await orchestrator.run_sync()

        assert "pdf_1" not in entries
        assert len(entries) == 3
        await self.queue.drain(timeout=5)

    @pytest.mark.asyncio
    async def test_unparseable_version_commits_unknown_version(self, store, tmp_path):
        store.descriptors = [descriptor("folder_x", ResourceKind.CONTAINER, version="v2")]
        orchestrator, cache = self.make_real(store, tmp_path)

        await orchestrator.run_sync()
        assert cache.get("folder_x").version == UNKNOWN_VERSION

        await orchestrator.run_sync()
        assert orchestrator.last_result.resources_stale == 1

    @pytest.mark.asyncio
    async def test_scope_is_passed_to_listing(self, store, tmp_path):
        orchestrator, _ = self.make_real(store, tmp_path)
        await orchestrator.run_sync("team_drive_1")
        assert store.calls[0] == ("list_all", "team_drive_1")
        await self.queue.drain(timeout=5)


class TestScheduling:
    """Sequential versus concurrent fetch scheduling."""

    @pytest.mark.asyncio
    async def test_five_stale_fetch_strictly_sequentially(self, store):
        store.descriptors = docs(5)
        cache = VersionedCache()
        fetcher = InstrumentedFetcher(cache)
        orchestrator = make_orchestrator(store, cache, fetcher)

        await orchestrator.run_sync()

        assert fetcher.max_in_flight == 1
        assert [d.id for d in fetcher.started] == [d.id for d in store.descriptors]
        # Call N+1 starts only after call N was committed
        for n, committed in enumerate(fetcher.committed_before_start):
            assert committed == {f"doc_{i}" for i in range(n)}
        assert orchestrator.last_result.sequential is True

    @pytest.mark.asyncio
    async def test_three_stale_fetch_concurrently(self, store):
        store.descriptors = docs(3)
        cache = VersionedCache()
        fetcher = InstrumentedFetcher(cache)
        orchestrator = make_orchestrator(store, cache, fetcher)

        await orchestrator.run_sync()

        assert fetcher.max_in_flight == 3
        assert len(cache) == 3
        assert orchestrator.last_result.sequential is False

    @pytest.mark.asyncio
    async def test_threshold_boundary(self, store):
        store.descriptors = docs(4)
        cache = VersionedCache()
        fetcher = InstrumentedFetcher(cache)
        orchestrator = make_orchestrator(store, cache, fetcher)

        await orchestrator.run_sync()

        assert fetcher.max_in_flight == 4

    @pytest.mark.asyncio
    async def test_sequential_failure_continues_with_rest(self, store):
        store.descriptors = docs(6)
        cache = VersionedCache()
        fetcher = InstrumentedFetcher(cache, fail_ids={"doc_2"})
        orchestrator = make_orchestrator(store, cache, fetcher)

        entries = await orchestrator.run_sync()

        assert len(fetcher.started) == 6
        assert set(entries) == {"doc_0", "doc_1", "doc_3", "doc_4", "doc_5"}

    @pytest.mark.asyncio
    async def test_bounded_pool_width(self, store):
        store.descriptors = docs(4)
        cache = VersionedCache()
        fetcher = InstrumentedFetcher(cache)
        orchestrator = make_orchestrator(
            store, cache, fetcher, ConcurrencyPolicy(threshold=10, max_concurrent=2)
        )

        await orchestrator.run_sync()

        assert fetcher.max_in_flight == 2
        assert len(cache) == 4

    def test_sync_result_counts(self):
        result = SyncResult(resources_listed=10, resources_stale=4)
        assert result.resources_skipped == 6


async def _noop_cache_asset(url):
    return False
