# tests/unit/services/test_dispatcher.py
import asyncio

import pytest
from unittest.mock import AsyncMock

from app.core.enums import JobStatus
from app.services.dispatcher import JobDispatcher
from app.services.handlers import FeedPushHandler
from app.services.job_runtime import build_runtime
from tests.mocks.mock_platform import InMemoryPlatformClient


async def _wait_for(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def _enqueue_items(job_queue, sample_feed_items, clock):
    jobs = []
    for item in sample_feed_items:
        jobs.append(await job_queue.enqueue("acme", "feed-push", target_key=item["sku"], payload={"items": [item]}))
        clock.advance(seconds=1)
    return jobs


@pytest.mark.asyncio
async def test_tick_claims_and_executes(job_queue, executor, settings, clock, sample_feed_items):
    jobs = await _enqueue_items(job_queue, sample_feed_items, clock)
    dispatcher = JobDispatcher(job_queue, executor, settings=settings)

    claimed = await dispatcher.tick()
    await dispatcher.drain()

    assert claimed == 2
    for job in jobs:
        assert (await job_queue.get_job(job.id)).status == JobStatus.SUCCESS.value
    assert dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_tick_with_nothing_ready(job_queue, executor, settings):
    dispatcher = JobDispatcher(job_queue, executor, settings=settings)
    assert await dispatcher.tick() == 0


@pytest.mark.asyncio
async def test_concurrency_cap_limits_claims(job_queue, executor, feed_client, settings, clock, sample_feed_items):
    items = sample_feed_items + [{**sample_feed_items[0], "sku": "C-300"}]
    jobs = await _enqueue_items(job_queue, items, clock)
    gate = asyncio.Event()

    async def wait_for_gate(operation):
        await gate.wait()

    feed_client.before_apply = wait_for_gate
    dispatcher = JobDispatcher(job_queue, executor, max_concurrency=2, settings=settings)

    assert await dispatcher.tick() == 2
    assert dispatcher.in_flight == 2
    # At capacity: nothing more is claimed, the third job stays queued
    assert await dispatcher.tick() == 0
    assert (await job_queue.get_job(jobs[2].id)).status == JobStatus.QUEUED.value

    gate.set()
    await dispatcher.drain()
    assert await dispatcher.tick() == 1
    await dispatcher.drain()

    for job in jobs:
        assert (await job_queue.get_job(job.id)).status == JobStatus.SUCCESS.value


@pytest.mark.asyncio
async def test_executor_crash_does_not_escape(job_queue, settings, clock, sample_feed_items):
    await _enqueue_items(job_queue, sample_feed_items, clock)
    broken_executor = AsyncMock()
    broken_executor.execute.side_effect = RuntimeError("database went away")
    dispatcher = JobDispatcher(job_queue, broken_executor, settings=settings)

    assert await dispatcher.tick() == 2
    await dispatcher.drain()

    assert broken_executor.execute.await_count == 2


@pytest.mark.asyncio
async def test_run_forever_wakes_on_demand_and_stops(job_queue, executor, settings, sample_feed_items):
    dispatcher = JobDispatcher(job_queue, executor, settings=settings)
    runner = asyncio.create_task(dispatcher.run_forever(poll_interval=30))
    await asyncio.sleep(0.05)

    job = await job_queue.enqueue("acme", "feed-push", payload={"items": sample_feed_items})
    dispatcher.wake()

    async def job_done():
        return (await job_queue.get_job(job.id)).status == JobStatus.SUCCESS.value

    await _wait_for(job_done)

    dispatcher.stop()
    await asyncio.wait_for(runner, timeout=5)
    assert dispatcher.in_flight == 0


@pytest.mark.asyncio
async def test_run_forever_survives_tick_errors(job_queue, executor, settings, mocker):
    calls = {"n": 0}

    async def flaky_claim(limit):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("connection reset")
        return []

    mocker.patch.object(job_queue, "claim_ready", side_effect=flaky_claim)
    dispatcher = JobDispatcher(job_queue, executor, settings=settings)
    runner = asyncio.create_task(dispatcher.run_forever(poll_interval=0.01))

    async def ticked_again():
        return calls["n"] >= 3

    await _wait_for(ticked_again)
    dispatcher.stop()
    await asyncio.wait_for(runner, timeout=5)


@pytest.mark.asyncio
async def test_runtime_close_waits_for_in_flight_jobs(session_factory, credentials, settings, sample_feed_items):
    client = InMemoryPlatformClient()

    async def slow_apply(operation):
        await asyncio.sleep(0.05)

    client.before_apply = slow_apply
    runtime = build_runtime(
        session_factory=session_factory,
        credentials=credentials,
        handlers=[FeedPushHandler(client)],
        settings=settings,
    )
    job = await runtime.queue.enqueue("acme", "feed-push", payload={"items": sample_feed_items})

    assert await runtime.dispatcher.tick() == 1
    await runtime.close()

    assert runtime.dispatcher.in_flight == 0
    assert (await runtime.queue.get_job(job.id)).status == JobStatus.SUCCESS.value
