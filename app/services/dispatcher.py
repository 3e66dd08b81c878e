# app/services/dispatcher.py
import asyncio
import logging
from typing import Optional, Set

from app.core.config import get_settings
from app.models.sync_job import SyncJob
from app.services.job_executor import JobExecutor
from app.services.job_queue import JobQueue

logger = logging.getLogger(__name__)


class JobDispatcher:
    """
    Polls the job store and hands claimed jobs to the executor.

    Each claimed job runs as its own asyncio task; a semaphore caps how many
    run at once in this process. Claiming is the only coordination between
    workers, so any number of dispatchers can share one database.
    """

    def __init__(
        self,
        queue: JobQueue,
        executor: JobExecutor,
        batch_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        settings=None,
    ):
        settings = settings or get_settings()
        self.queue = queue
        self.executor = executor
        self.batch_size = batch_size or settings.JOB_BATCH_SIZE
        self.max_concurrency = max_concurrency or settings.JOB_MAX_CONCURRENCY
        self.poll_interval = settings.JOB_POLL_INTERVAL_SECONDS
        self._semaphore = asyncio.Semaphore(self.max_concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._wake = asyncio.Event()
        self._stopping = asyncio.Event()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _capacity(self) -> int:
        return max(self.max_concurrency - len(self._tasks), 0)

    async def tick(self) -> int:
        """Claim what this process has room for and start executing it. Returns the number claimed."""
        limit = min(self.batch_size, self._capacity())
        if limit <= 0:
            logger.debug(f"Dispatcher at capacity ({self.in_flight} in flight), not claiming")
            return 0

        jobs = await self.queue.claim_ready(limit)
        for job in jobs:
            task = asyncio.create_task(self._run(job), name=f"sync-job-{job.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if jobs:
            logger.info(f"Claimed {len(jobs)} job(s), {self.in_flight} in flight")
        return len(jobs)

    async def _run(self, job: SyncJob) -> None:
        async with self._semaphore:
            try:
                await self.executor.execute(job)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Store unreachable while recording the outcome; the reaper picks the job up later
                logger.exception(f"Could not record outcome of job {job.id}")

    def wake(self) -> None:
        """Ask the loop to tick now instead of waiting for the next poll."""
        self._wake.set()

    def stop(self) -> None:
        self._stopping.set()
        self._wake.set()

    async def drain(self) -> None:
        """Wait for every in-flight job to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run_forever(self, poll_interval: Optional[float] = None) -> None:
        interval = poll_interval if poll_interval is not None else self.poll_interval
        logger.info(f"Dispatcher started (batch={self.batch_size}, concurrency={self.max_concurrency}, poll={interval}s)")

        while not self._stopping.is_set():
            self._wake.clear()
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Dispatcher tick failed")

            if self._stopping.is_set():
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Dispatcher stopping, waiting for in-flight jobs")
        await self.drain()
        logger.info("Dispatcher stopped")
