"""
Worker Service

Manages background crawler worker lifecycle.
"""

import asyncio
import logging
from datetime import datetime, UTC

from wikicrawl.db.store import CrawlStore
from wikicrawl.models.worker import WorkerStatus

logger = logging.getLogger(__name__)


class WorkerService:
    """Background crawler worker management"""

    def __init__(self, store: CrawlStore | None = None):
        self.store = store
        self.task: asyncio.Task | None = None
        self.stop_event: asyncio.Event | None = None
        self.started_at: datetime | None = None
        self.concurrency: int | None = None

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    async def start(self, concurrency: int = 1):
        """Start worker with specified concurrency"""
        if self.is_running:
            raise RuntimeError("Worker is already running")

        # Import here to avoid circular deps
        from wikicrawl.workers.tasks import worker_loop

        self.concurrency = concurrency
        self.stop_event = asyncio.Event()
        self.task = asyncio.create_task(
            worker_loop(
                store=self.store, concurrency=concurrency, stop_event=self.stop_event
            )
        )
        self.started_at = datetime.now(UTC)
        logger.info(f"Worker started with concurrency={concurrency}")

    async def stop(self, graceful: bool = True):
        """Stop background worker"""
        if not self.is_running:
            logger.warning("Worker is not running")
            self._reset()
            return

        if graceful:
            logger.info("Stopping worker gracefully (waiting for current pages)...")
            self.stop_event.set()
            await self.task
        else:
            logger.info("Stopping worker immediately...")
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass

        self._reset()
        logger.info("Background worker stopped")

    async def wait(self):
        """Wait for the worker loop to finish on its own (frontier exhausted)."""
        if self.task is not None:
            await self.task
        self._reset()

    def _reset(self):
        self.task = None
        self.stop_event = None
        self.started_at = None
        self.concurrency = None

    def get_uptime(self) -> float | None:
        """Get worker uptime in seconds"""
        if not self.started_at:
            return None
        return (datetime.now(UTC) - self.started_at).total_seconds()

    def get_status(self) -> WorkerStatus:
        if not self.is_running:
            return WorkerStatus(status="stopped")
        return WorkerStatus(
            status="running",
            started_at=self.started_at,
            uptime_seconds=self.get_uptime(),
            concurrency=self.concurrency,
        )
