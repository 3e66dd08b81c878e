"""
Sync worker process.

Runs the job dispatcher (claim, execute) and the stale-job reaper until
SIGINT/SIGTERM. Any number of workers can run against the same database.
"""

import asyncio
import logging
import os
import signal
from datetime import timedelta

from app.core.config import get_settings
from app.core.logging_config import configure_logging
from app.services.job_runtime import SyncRuntime, build_runtime

logger = logging.getLogger("sync_worker")

# Graceful shutdown flag
_shutdown_requested = False


def _request_shutdown(runtime: SyncRuntime) -> None:
    global _shutdown_requested
    if _shutdown_requested:
        # Second signal = force exit
        logger.warning("Forced shutdown requested")
        raise SystemExit(1)
    _shutdown_requested = True
    logger.info("Shutdown requested - will exit after in-flight jobs complete")
    runtime.dispatcher.stop()


async def reaper_loop(runtime: SyncRuntime, interval: float, stale_after: timedelta) -> None:
    while not _shutdown_requested:
        try:
            await runtime.queue.reap_stale(stale_after)
        except Exception as exc:
            logger.error("Reaper pass failed: %s", exc, exc_info=True)
        await asyncio.sleep(interval)


async def main() -> None:
    settings = get_settings()
    configure_logging(os.environ.get("SYNC_WORKER_LOG_LEVEL", "INFO"))

    runtime = build_runtime(settings=settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown, runtime)

    logger.info(
        "Starting sync worker (kinds=%s, poll=%ss, batch=%s, concurrency=%s)",
        ",".join(runtime.registry.kinds),
        settings.JOB_POLL_INTERVAL_SECONDS,
        settings.JOB_BATCH_SIZE,
        settings.JOB_MAX_CONCURRENCY,
    )

    reaper = asyncio.create_task(
        reaper_loop(
            runtime,
            settings.JOB_REAPER_INTERVAL_SECONDS,
            timedelta(minutes=settings.JOB_STALE_AFTER_MINUTES),
        )
    )
    try:
        await runtime.dispatcher.run_forever()
    finally:
        reaper.cancel()
        try:
            await reaper
        except asyncio.CancelledError:
            pass
        await runtime.close()
        logger.info("Sync worker shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
