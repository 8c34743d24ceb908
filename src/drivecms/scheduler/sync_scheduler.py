"""Periodic background sync."""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, EVENT_JOB_MISSED

from ..utils.logging import get_logger


class SchedulerError(Exception):
    """Raised when scheduler operations fail."""
    pass


class SyncScheduler:
    """Runs a sync callable on a fixed interval."""

    JOB_ID = "periodic_sync"

    def __init__(
        self,
        sync_func: Callable[[], Awaitable[Any]],
        interval_minutes: int
    ):
        """Initialize sync scheduler.

        Args:
            sync_func: Coroutine function performing one sync run
            interval_minutes: Minutes between runs
        """
        if interval_minutes <= 0:
            raise SchedulerError("interval_minutes must be positive")

        self.sync_func = sync_func
        self.interval_minutes = interval_minutes
        self.logger = get_logger(self.__class__.__name__)

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                'coalesce': True,  # Combine multiple pending executions
                'max_instances': 1,  # Only one instance per job
                'misfire_grace_time': 300  # 5 minutes grace time
            }
        )
        self.stats: Dict[str, Any] = {"run_count": 0, "error_count": 0, "missed_count": 0}

        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._job_missed, EVENT_JOB_MISSED)

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start the scheduler with the periodic sync job."""
        if self.scheduler.running:
            self.logger.warning("Scheduler is already running")
            return

        try:
            self.scheduler.add_job(
                func=self.sync_func,
                trigger=IntervalTrigger(minutes=self.interval_minutes),
                id=self.JOB_ID,
                name="Periodic sync",
                replace_existing=True
            )
            self.scheduler.start()
        except Exception as e:
            self.logger.error("Failed to start scheduler", error=str(e))
            raise SchedulerError(f"Failed to start scheduler: {e}")

        self.logger.info("Sync scheduler started", interval_minutes=self.interval_minutes)

    async def stop(self, wait: bool = False):
        """Stop the scheduler and wait for the shutdown to take effect."""
        if not self.scheduler.running:
            return
        self.scheduler.shutdown(wait=wait)
        # AsyncIOScheduler applies shutdown on the event loop
        while self.scheduler.running:
            await asyncio.sleep(0)
        self.logger.info("Sync scheduler stopped")

    def next_run_time(self) -> Optional[Any]:
        job = self.scheduler.get_job(self.JOB_ID)
        return job.next_run_time if job else None

    def _job_executed(self, event):
        self.stats["run_count"] += 1
        self.logger.debug("Periodic sync executed", job_id=event.job_id)

    def _job_error(self, event):
        self.stats["run_count"] += 1
        self.stats["error_count"] += 1
        self.logger.error("Periodic sync failed", job_id=event.job_id, error=str(event.exception))

    def _job_missed(self, event):
        self.stats["missed_count"] += 1
        self.logger.warning("Periodic sync missed", job_id=event.job_id)
