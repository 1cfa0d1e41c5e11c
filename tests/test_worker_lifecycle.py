"""
Worker Lifecycle Tests

Tests for WorkerService.
"""

import asyncio

import pytest
from unittest.mock import patch, AsyncMock

from wikicrawl.models import WorkerStatus
from wikicrawl.services.worker import WorkerService


@pytest.mark.asyncio
async def test_worker_service_start():
    """Test WorkerService.start() creates background task"""
    service = WorkerService()

    with patch("wikicrawl.workers.tasks.worker_loop", new_callable=AsyncMock) as loop:
        await service.start(concurrency=2)

        assert service.is_running is True
        assert service.started_at is not None
        assert service.concurrency == 2
        assert service.task is not None

        # Cleanup
        await service.stop(graceful=False)

    assert loop.call_args.kwargs["concurrency"] == 2


@pytest.mark.asyncio
async def test_worker_service_double_start():
    """Test WorkerService.start() refuses to start twice"""
    service = WorkerService()

    with patch("wikicrawl.workers.tasks.worker_loop", new_callable=AsyncMock):
        await service.start(concurrency=1)
        with pytest.raises(RuntimeError):
            await service.start(concurrency=1)
        await service.stop(graceful=False)


@pytest.mark.asyncio
async def test_worker_service_stop_graceful():
    """Test WorkerService.stop(graceful=True) waits for the loop via the stop event"""
    service = WorkerService()

    async def loop_until_stopped(store=None, concurrency=1, stop_event=None):
        await stop_event.wait()

    with patch("wikicrawl.workers.tasks.worker_loop", side_effect=loop_until_stopped):
        await service.start(concurrency=1)
        await asyncio.sleep(0)
        assert service.is_running is True

        await asyncio.wait_for(service.stop(graceful=True), timeout=5)

        assert service.is_running is False
        assert service.started_at is None
        assert service.concurrency is None


@pytest.mark.asyncio
async def test_worker_service_stop_forceful():
    """Test WorkerService.stop(graceful=False) stops immediately"""
    service = WorkerService()

    async def loop_forever(store=None, concurrency=1, stop_event=None):
        await asyncio.sleep(3600)

    with patch("wikicrawl.workers.tasks.worker_loop", side_effect=loop_forever):
        await service.start(concurrency=1)
        await asyncio.sleep(0)

        await service.stop(graceful=False)

        assert service.is_running is False
        assert service.concurrency is None


@pytest.mark.asyncio
async def test_worker_service_stop_when_not_running():
    """Test WorkerService.stop() on an idle service is a no-op"""
    service = WorkerService()
    await service.stop()
    assert service.is_running is False


def test_worker_service_uptime():
    """Test get_uptime() is None until started"""
    service = WorkerService()
    assert service.get_uptime() is None


@pytest.mark.asyncio
async def test_worker_service_status():
    """Test get_status() reports running and stopped workers"""
    service = WorkerService()
    assert service.get_status() == WorkerStatus(status="stopped")

    with patch("wikicrawl.workers.tasks.worker_loop", new_callable=AsyncMock):
        await service.start(concurrency=3)
        status = service.get_status()
        assert status.status == "running"
        assert status.concurrency == 3
        assert status.uptime_seconds >= 0
        await service.stop(graceful=False)


@pytest.mark.asyncio
async def test_worker_service_runs_crawl(store, france):
    """Test WorkerService drives a real crawl to completion"""
    service = WorkerService(store)

    with patch("wikicrawl.workers.tasks.fetch_links", new_callable=AsyncMock, return_value=[]):
        await service.start(concurrency=1)
        await asyncio.wait_for(service.wait(), timeout=30)

    assert service.is_running is False
    assert store.pages.get(france).bugged is True
