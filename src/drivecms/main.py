"""Main application entry point and HTTP serving layer."""

import asyncio
import signal
import sys
from datetime import datetime, timezone
from typing import Dict, Optional

from aiohttp import web, web_runner

from .cache import AssetCache, CacheEntry, VersionedCache, managed_cache
from .config.settings import AppSettings, get_settings
from .core import ResourceFetcher, SyncOrchestrator, rows_to_records
from .performance import BackgroundTaskQueue, ConcurrencyPolicy
from .remote import (
    GoogleDriveStore,
    RemoteStore,
    ResourceDescriptor,
    ResourceKind,
    RemoteListError,
    DriveCMSError
)
from .scheduler import SyncScheduler
from .utils.logging import setup_logging, get_logger


class DriveCMSApp:
    """Wires the cache, sync engine and HTTP routes together."""

    def __init__(self, store: Optional[RemoteStore] = None, settings: Optional[AppSettings] = None):
        self.settings = settings or get_settings()
        self.logger = get_logger("DriveCMS")
        self.running = False

        self.store = store or GoogleDriveStore(
            credentials_path=self.settings.drive.credentials_path,
            page_size=self.settings.drive.page_size,
            rate_limit_calls=self.settings.drive.rate_limit_calls,
            rate_limit_window=self.settings.drive.rate_limit_window
        )
        self.cache = VersionedCache(self.settings.cache.snapshot_path)
        self.task_queue = BackgroundTaskQueue("assets")
        self.asset_cache = AssetCache(
            asset_dir=self.settings.cache.asset_dir,
            service_base_url=self.settings.cache.service_base_url,
            timeout_seconds=self.settings.cache.asset_timeout_seconds
        )
        self.fetcher = ResourceFetcher(self.store, self.asset_cache, self.task_queue)
        self.orchestrator = SyncOrchestrator(
            self.store,
            self.cache,
            self.fetcher,
            ConcurrencyPolicy(
                threshold=self.settings.sync.throttle_threshold,
                max_concurrent=self.settings.sync.max_concurrent
            )
        )

        # The orchestrator does not exclude overlapping runs; requests and the
        # scheduler share this lock so only one run is in flight.
        self._sync_lock = asyncio.Lock()
        self.scheduler: Optional[SyncScheduler] = None
        self.web_runner: Optional[web_runner.AppRunner] = None

    async def sync(self, scope_id: Optional[str] = None) -> Dict[str, CacheEntry]:
        """Run one sync, waiting for any run already in progress."""
        async with self._sync_lock:
            return await self.orchestrator.run_sync(scope_id)

    async def scheduled_sync(self):
        try:
            await self.sync(self.settings.drive.team_drive_id)
        except RemoteListError as e:
            self.logger.error("Scheduled sync failed", error=str(e))

    def create_web_app(self) -> web.Application:
        """Build the aiohttp application with all routes."""
        api = web.Application()
        api.router.add_get('/', self._root_handler)
        api.router.add_get('/getAll', self._get_all_handler)
        api.router.add_get('/getSheet', self._get_sheet_handler)
        api.router.add_get('/getDoc', self._get_doc_handler)
        api.router.add_get('/listFiles', self._list_files_handler)
        api.router.add_get('/getImage', self._get_image_handler)

        app = web.Application()
        app.router.add_get('/health', self._health_handler)
        app.add_subapp(f"/v{self.settings.server.api_version}", api)
        return app

    async def startup(self):
        """Application startup. Expects the cache to be loaded already."""
        self.logger.info(
            "Starting Drive CMS",
            version=self.settings.version,
            environment=self.settings.environment,
            cached_resources=len(self.cache)
        )

        self.web_runner = web_runner.AppRunner(self.create_web_app())
        await self.web_runner.setup()
        site = web_runner.TCPSite(self.web_runner, self.settings.server.host, self.settings.server.port)
        await site.start()
        self.logger.info(
            "Drive CMS backend listening",
            host=self.settings.server.host,
            port=self.settings.server.port
        )

        if self.settings.sync.interval_minutes > 0:
            self.scheduler = SyncScheduler(self.scheduled_sync, self.settings.sync.interval_minutes)
            self.scheduler.start()

        self.running = True

    async def shutdown(self):
        """Application shutdown. The cache snapshot is written by the caller."""
        self.logger.info("Shutting down Drive CMS")
        self.running = False

        if self.scheduler:
            await self.scheduler.stop()

        if self.web_runner:
            await self.web_runner.cleanup()
            self.logger.info("Web server stopped")

        if not await self.task_queue.drain(timeout=10):
            await self.task_queue.cancel_all()
        await self.asset_cache.close()

        self.logger.info("Drive CMS stopped")

    async def run(self):
        """Run until ``running`` is cleared, flushing the cache on every exit path."""
        with managed_cache(self.cache):
            try:
                await self.startup()
                while self.running:
                    await asyncio.sleep(1)
            finally:
                await self.shutdown()

    async def _root_handler(self, request):
        return web.Response(status=200, text="OK")

    async def _health_handler(self, request):
        health_data = {
            "status": "healthy" if self.running else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": self.settings.version,
            "cached_resources": len(self.cache),
            "pending_assets": self.task_queue.pending
        }
        if self.orchestrator.last_result:
            health_data["last_sync_duration"] = self.orchestrator.last_result.sync_duration
        return web.json_response(health_data, status=200 if self.running else 503)

    async def _get_all_handler(self, request):
        drive_id = request.query.get("driveId") or self.settings.drive.team_drive_id
        self.logger.info("GET /getAll", drive_id=drive_id)
        try:
            entries = await self.sync(drive_id)
        except RemoteListError as e:
            self.logger.error("Sync request failed", error=str(e))
            return web.Response(status=500)
        return web.json_response({rid: entry.to_dict() for rid, entry in entries.items()})

    async def _get_sheet_handler(self, request):
        sheet_id = request.query.get("id")
        cell_range = request.query.get("range")
        if not sheet_id or not cell_range:
            return web.Response(status=400)
        self.logger.info("GET /getSheet", id=sheet_id, range=cell_range)
        try:
            values = await self.store.fetch_sheet_range(sheet_id, cell_range)
        except DriveCMSError as e:
            self.logger.error("Sheet request failed", id=sheet_id, error=str(e))
            return web.Response(status=500)
        return web.json_response(rows_to_records(values))

    async def _get_doc_handler(self, request):
        doc_id = request.query.get("id")
        if not doc_id:
            return web.Response(status=400)
        self.logger.info("GET /getDoc", id=doc_id)
        descriptor = ResourceDescriptor(id=doc_id, name=doc_id, kind=ResourceKind.RICH_TEXT)
        try:
            payload = await self.fetcher.fetch(descriptor)
        except DriveCMSError as e:
            self.logger.error("Doc request failed", id=doc_id, error=str(e))
            return web.Response(status=500)
        return web.json_response(payload)

    async def _list_files_handler(self, request):
        folder_id = request.query.get("folder")
        if not folder_id:
            return web.Response(status=400)
        self.logger.info("GET /listFiles", folder=folder_id)
        try:
            children = await self.store.fetch_container(folder_id)
        except DriveCMSError as e:
            self.logger.error("Folder request failed", folder=folder_id, error=str(e))
            return web.Response(status=500)
        return web.json_response([child.to_dict() for child in children])

    async def _get_image_handler(self, request):
        key = request.query.get("id", "")
        if not self.asset_cache.is_cached(key):
            return web.Response(status=404)
        return web.FileResponse(self.asset_cache.asset_path(key))


def setup_signal_handlers(app: DriveCMSApp):
    """Set up signal handlers for graceful shutdown."""
    def signal_handler(signum, frame):
        app.logger.info(f"Received signal {signum}")
        app.running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main():
    """Main entry point."""
    setup_logging()

    app = DriveCMSApp()
    setup_signal_handlers(app)
    await app.run()


def cli():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except Exception as e:
        print(f"Application failed with error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
