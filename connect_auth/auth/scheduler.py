"""Periodic purge of expired verification tokens."""

import asyncio
import logging
from asyncio import Task
from typing import Any

from .services.verification_tokens import VerificationTokenManager

logger = logging.getLogger(__name__)


class TokenCleanupScheduler:
    """Runs VerificationTokenManager.purge_expired on a fixed interval, off the request path."""

    def __init__(self, token_manager: VerificationTokenManager, interval_seconds: float = 3600):
        self.token_manager = token_manager
        self.interval_seconds = interval_seconds
        self._task: Task[Any] | None = None
        self._shutdown_event = asyncio.Event()
        self.runs = 0

    async def start(self) -> None:
        """Start the purge loop; the first sweep runs immediately."""
        if self._task is None:
            self._shutdown_event.clear()
            self._task = asyncio.create_task(self._run())
            logger.info(f"Token cleanup scheduled every {self.interval_seconds}s")

    async def stop(self) -> None:
        """Stop the purge loop and wait for an in-flight sweep."""
        self._shutdown_event.set()
        if self._task:
            await self._task
            self._task = None

    async def run_once(self) -> int:
        count = await asyncio.to_thread(self.token_manager.purge_expired)
        self.runs += 1
        return count

    async def _run(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Expired token cleanup failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                continue
