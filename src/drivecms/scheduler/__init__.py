"""Scheduling package for periodic sync runs."""

from .sync_scheduler import SyncScheduler, SchedulerError

__all__ = [
    "SyncScheduler",
    "SchedulerError"
]
