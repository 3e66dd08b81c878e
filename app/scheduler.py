"""
Scheduled tasks for the sync job engine.
Runs the dispatcher tick and the stale-job reaper on APScheduler interval
triggers, for processes that host the engine next to other work.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

from app.core.config import get_settings
from app.services.job_runtime import SyncRuntime

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def dispatch_ready_jobs_task(runtime: SyncRuntime):
    """Claim and start whatever is ready"""
    claimed = await runtime.dispatcher.tick()
    if claimed:
        logger.info(f"Scheduled tick claimed {claimed} job(s)")


async def reap_stale_jobs_task(runtime: SyncRuntime, stale_after: timedelta):
    """Feed abandoned processing jobs back into the retry path"""
    reaped = await runtime.queue.reap_stale(stale_after)
    if reaped:
        logger.warning(f"Reaper re-queued or failed {reaped} abandoned job(s)")


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.debug(f"Job {event.job_id} executed successfully at {datetime.now(timezone.utc)}")


def create_scheduler(runtime: SyncRuntime, settings=None) -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    settings = settings or get_settings()
    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if settings.SYNC_SCHEDULER_ENABLED:
        scheduler.add_job(
            dispatch_ready_jobs_task,
            IntervalTrigger(seconds=settings.JOB_POLL_INTERVAL_SECONDS),
            args=[runtime],
            id="dispatch_sync_jobs",
            name="Dispatch Sync Jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            reap_stale_jobs_task,
            IntervalTrigger(seconds=settings.JOB_REAPER_INTERVAL_SECONDS),
            args=[runtime, timedelta(minutes=settings.JOB_STALE_AFTER_MINUTES)],
            id="reap_stale_sync_jobs",
            name="Reap Stale Sync Jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(
            f"Sync jobs scheduled: dispatch every {settings.JOB_POLL_INTERVAL_SECONDS}s, "
            f"reaper every {settings.JOB_REAPER_INTERVAL_SECONDS}s"
        )
    else:
        logger.info("Sync scheduler is disabled. Set SYNC_SCHEDULER_ENABLED=true to enable")

    return scheduler


async def start_scheduler(runtime: SyncRuntime):
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler(runtime)

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")

        jobs = scheduler.get_jobs()
        if jobs:
            logger.info(f"Active scheduled jobs: {len(jobs)}")
            for job in jobs:
                logger.info(f"  - {job.name}: {job.trigger}")
        else:
            logger.info("No scheduled jobs configured")


async def stop_scheduler(runtime: Optional[SyncRuntime] = None):
    """Stop the scheduler gracefully, then let in-flight sync jobs finish"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped successfully")
    scheduler = None

    if runtime is not None:
        await runtime.dispatcher.drain()


def get_scheduler_status():
    """Get current scheduler status and job information"""
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info
    }
