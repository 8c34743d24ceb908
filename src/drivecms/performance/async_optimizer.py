"""Async scheduling utilities: rate limiting, fetch concurrency and background work."""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Callable, Any, Optional, Dict, Set, TypeVar, Awaitable, Coroutine

from ..utils.logging import get_logger


T = TypeVar('T')


class AsyncRateLimiter:
    """Sliding-window rate limiter for async operations."""

    def __init__(self, max_calls: int, time_window: float):
        """Initialize rate limiter.

        Args:
            max_calls: Maximum number of calls in the time window
            time_window: Time window in seconds
        """
        self.max_calls = max_calls
        self.time_window = time_window
        self.calls: List[float] = []
        self.lock = asyncio.Lock()

        self.logger = get_logger(self.__class__.__name__)

    async def acquire(self):
        """Acquire permission to make a call."""
        async with self.lock:
            while True:
                now = time.monotonic()
                # Remove calls outside the time window
                self.calls = [t for t in self.calls if now - t < self.time_window]

                if len(self.calls) < self.max_calls:
                    self.calls.append(now)
                    return

                # Wait for the oldest call to leave the window
                wait_time = self.time_window - (now - min(self.calls))
                self.logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s")
                await asyncio.sleep(max(wait_time, 0))

    @asynccontextmanager
    async def limit(self):
        """Context manager for rate limiting."""
        await self.acquire()
        yield


@dataclass
class ConcurrencyPolicy:
    """Decides how many fetches may be in flight for a batch of pending work.

    Batches larger than ``threshold`` run one at a time so a large backlog
    does not hammer the remote store; smaller batches run with
    ``max_concurrent`` in flight (None = unbounded).
    """

    threshold: int = 4
    max_concurrent: Optional[int] = None

    def limit_for(self, pending: int) -> Optional[int]:
        """Maximum in-flight operations for ``pending`` items (None = unbounded)."""
        if pending > self.threshold:
            return 1
        return self.max_concurrent


class ConcurrentExecutor:
    """Runs async task factories under a per-call concurrency limit."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    async def execute_batch(
        self,
        tasks: List[Callable[[], Awaitable[T]]],
        max_concurrent: Optional[int] = None
    ) -> List[T]:
        """Execute task factories and return their results in task order.

        With ``max_concurrent == 1`` each task is awaited to completion before
        the next one is started, in list order.
        """
        # Sequential: start each task only after the previous one finished
        if max_concurrent == 1:
            results = []
            for task_func in tasks:
                results.append(await task_func())
            return results

        if max_concurrent is None:
            return list(await asyncio.gather(*(task_func() for task_func in tasks)))

        # Bounded pool
        semaphore = asyncio.Semaphore(max_concurrent)

        async def execute_single(task_func):
            async with semaphore:
                return await task_func()

        return list(await asyncio.gather(*(execute_single(t) for t in tasks)))


class BackgroundTaskQueue:
    """Fire-and-forget task submission with its own error channel.

    Submitted coroutines run as event loop tasks; failures are logged and
    counted, never raised to the submitter.
    """

    def __init__(self, name: str = "background"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._stats = {"submitted": 0, "completed": 0, "failed": 0}
        self.logger = get_logger(self.__class__.__name__)

    def submit(self, coro: Coroutine[Any, Any, Any], description: Optional[str] = None) -> asyncio.Task:
        """Schedule ``coro`` on the running loop without awaiting it."""
        task = asyncio.get_running_loop().create_task(self._run(coro, description))
        self._tasks.add(task)
        # Strong reference until done
        task.add_done_callback(self._tasks.discard)
        self._stats["submitted"] += 1
        return task

    async def _run(self, coro: Coroutine[Any, Any, Any], description: Optional[str]):
        try:
            result = await coro
            self._stats["completed"] += 1
            return result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats["failed"] += 1
            self.logger.warning(
                "Background task failed",
                queue=self.name,
                task=description,
                error=str(e)
            )
            return None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding tasks, including ones submitted while waiting.

        Returns:
            True if the queue emptied, False on timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            # Tasks may submit more work while we wait
            done, _ = await asyncio.wait(set(self._tasks), timeout=remaining)
            if not done:
                return False
        return True

    async def cancel_all(self):
        """Cancel outstanding tasks and wait for them to finish."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            self.logger.info("Cancelled background tasks", queue=self.name, count=len(tasks))

    def get_stats(self) -> Dict[str, int]:
        """Get queue statistics."""
        return {**self._stats, "pending": self.pending}
