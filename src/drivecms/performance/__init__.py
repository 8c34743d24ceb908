"""Async scheduling package."""

from .async_optimizer import (
    AsyncRateLimiter,
    ConcurrencyPolicy,
    ConcurrentExecutor,
    BackgroundTaskQueue
)

__all__ = [
    "AsyncRateLimiter",
    "ConcurrencyPolicy",
    "ConcurrentExecutor",
    "BackgroundTaskQueue",
]
