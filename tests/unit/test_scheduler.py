# tests/unit/test_scheduler.py
from datetime import timedelta

import pytest
from unittest.mock import AsyncMock, MagicMock

from app import scheduler as scheduler_module
from app.scheduler import (
    create_scheduler,
    dispatch_ready_jobs_task,
    get_scheduler_status,
    reap_stale_jobs_task,
    stop_scheduler,
)


@pytest.fixture
def runtime():
    runtime = MagicMock()
    runtime.dispatcher.tick = AsyncMock(return_value=3)
    runtime.dispatcher.drain = AsyncMock()
    runtime.queue.reap_stale = AsyncMock(return_value=1)
    return runtime


@pytest.fixture(autouse=True)
def reset_scheduler():
    scheduler_module.scheduler = None
    yield
    scheduler_module.scheduler = None


def test_scheduler_registers_dispatch_and_reaper(runtime, settings):
    settings.SYNC_SCHEDULER_ENABLED = True

    sched = create_scheduler(runtime, settings)

    job_ids = sorted(job.id for job in sched.get_jobs())
    assert job_ids == ["dispatch_sync_jobs", "reap_stale_sync_jobs"]
    status = get_scheduler_status()
    assert status["status"] == "stopped"
    assert len(status["jobs"]) == 2


def test_scheduler_disabled_has_no_jobs(runtime, settings):
    settings.SYNC_SCHEDULER_ENABLED = False

    sched = create_scheduler(runtime, settings)

    assert sched.get_jobs() == []


def test_status_before_creation():
    assert get_scheduler_status() == {"status": "not_initialized", "jobs": []}


@pytest.mark.asyncio
async def test_tasks_delegate_to_runtime(runtime):
    await dispatch_ready_jobs_task(runtime)
    await reap_stale_jobs_task(runtime, timedelta(minutes=30))

    runtime.dispatcher.tick.assert_awaited_once()
    runtime.queue.reap_stale.assert_awaited_once_with(timedelta(minutes=30))


@pytest.mark.asyncio
async def test_stop_scheduler_drains_runtime(runtime):
    await stop_scheduler(runtime)

    runtime.dispatcher.drain.assert_awaited_once()
    assert scheduler_module.scheduler is None
