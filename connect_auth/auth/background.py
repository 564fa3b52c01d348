"""
Bounded fire-and-forget work for the request path.

Used for updates whose failure must not reach the caller (e.g. recording a
login time). Work runs in worker threads behind a semaphore, at most one
pending task per key, and failures are logged and counted.
"""

import asyncio
import logging
from asyncio import Task
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Runs detached blocking callables with bounded concurrency."""

    def __init__(self, max_concurrency: int = 8, max_pending: int = 1000) -> None:
        """
        Initialize the runner.

        Args:
            max_concurrency: Callables allowed to run at the same time
            max_pending: Scheduled tasks allowed before new work is dropped
        """
        self.max_pending = max_pending
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[Task[None]] = set()
        self._pending_keys: set[str] = set()

        # Performance tracking
        self.completed_count = 0
        self.error_count = 0
        self.dropped_count = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, name: str, func: Callable[..., Any], *args: Any, key: str | None = None) -> bool:
        """
        Schedule ``func(*args)`` without waiting for it.

        Must be called from a running event loop. Returns False when the work
        was coalesced with a pending task of the same key or dropped because
        the runner is saturated.
        """
        if key is not None and key in self._pending_keys:
            self.dropped_count += 1
            logger.debug(f"Coalesced background task {name} for key {key}")
            return False
        if len(self._tasks) >= self.max_pending:
            self.dropped_count += 1
            logger.warning(f"Background runner saturated, dropping task {name}")
            return False

        if key is not None:
            self._pending_keys.add(key)
        task = asyncio.create_task(self._run(name, func, args, key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(
        self, name: str, func: Callable[..., Any], args: tuple[Any, ...], key: str | None
    ) -> None:
        try:
            async with self._semaphore:
                await asyncio.to_thread(func, *args)
            self.completed_count += 1
        except Exception as e:
            self.error_count += 1
            logger.error(f"Background task {name} failed: {e}", exc_info=True)
        finally:
            if key is not None:
                self._pending_keys.discard(key)

    async def drain(self) -> None:
        """Wait until every scheduled task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
