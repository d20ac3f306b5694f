"""Tests for the maintenance scheduler."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from chronicle.core.scheduler import MaintenanceScheduler


@pytest.fixture
def scheduler(clock) -> MaintenanceScheduler:
    return MaintenanceScheduler(clock=clock, poll_seconds=0.01)


def test_schedule_and_cancel(scheduler: MaintenanceScheduler):
    scheduler.schedule_task("test", "Test task", lambda: None, interval=timedelta(minutes=1))
    assert scheduler._tasks["test"].name == "Test task"
    assert scheduler.cancel_task("test")
    assert not scheduler.cancel_task("test")


@pytest.mark.asyncio
async def test_interval_task_reschedules(scheduler: MaintenanceScheduler, clock):
    calls = []
    scheduler.schedule_task("tick", "Tick", lambda: calls.append(clock()), interval=timedelta(hours=1))

    assert await scheduler.run_pending() == 1
    assert await scheduler.run_pending() == 0

    clock.advance(hours=1)
    assert await scheduler.run_pending() == 1
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_one_shot_task_removed(scheduler: MaintenanceScheduler):
    job = AsyncMock()
    scheduler.schedule_task("once", "Once", job)

    await scheduler.run_pending()

    job.assert_awaited_once()
    assert "once" not in scheduler._tasks


@pytest.mark.asyncio
async def test_delayed_task_waits(scheduler: MaintenanceScheduler, clock):
    job = AsyncMock()
    scheduler.schedule_task("later", "Later", job, delay=timedelta(minutes=5))

    assert await scheduler.run_pending() == 0
    clock.advance(minutes=5)
    assert await scheduler.run_pending() == 1


@pytest.mark.asyncio
async def test_failing_task_does_not_stop_others(scheduler: MaintenanceScheduler):
    broken = AsyncMock(side_effect=RuntimeError("boom"))
    healthy = AsyncMock()
    scheduler.schedule_task("broken", "Broken", broken, interval=timedelta(hours=1))
    scheduler.schedule_task("healthy", "Healthy", healthy, interval=timedelta(hours=1))

    assert await scheduler.run_pending() == 2

    healthy.assert_awaited_once()
    assert scheduler._tasks["broken"].running is False


@pytest.mark.asyncio
async def test_schedule_maintenance_runs_jobs(scheduler: MaintenanceScheduler):
    service = AsyncMock()
    scheduler.schedule_maintenance(service, timedelta(minutes=60))

    await scheduler.run_pending()

    service.compress_all_aged.assert_awaited_once()
    service.purge_expired_memories.assert_awaited_once()
    service.purge_expired_cache.assert_awaited_once()


@pytest.mark.asyncio
async def test_start_and_stop(scheduler: MaintenanceScheduler):
    job = AsyncMock()
    scheduler.schedule_task("once", "Once", job)

    await scheduler.start()
    for _ in range(50):
        if job.await_count:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()

    job.assert_awaited_once()
    assert scheduler._loop_task is None
