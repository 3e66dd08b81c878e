# app/services/job_executor.py
"""
Runs one claimed job to completion.

The executor turns every outcome into exactly one job transition: success,
or a failure handed to the job store (which decides between retry and
terminal failure). Nothing raised inside a job escapes ``execute``.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.core.config import get_settings
from app.core.enums import JobStatus, SyncOperationType
from app.core.exceptions import (
    BaseServiceError,
    CredentialError,
    ExternalAPIError,
    PartialApplyError,
    RateLimitError,
)
from app.core.utils import as_utc, utcnow
from app.integrations.base import AccessToken, CredentialProvider
from app.models.sync_job import SyncJob
from app.services.backoff import rate_limit_delay
from app.services.handlers.base import HandlerRegistry, JobHandler
from app.services.job_queue import JobQueue
from app.services.reconciliation import SyncOperation, compute_diff

logger = logging.getLogger(__name__)

COOLDOWN_RESULT = {"skipped": True, "reason": "cooldown"}

_COUNT_FIELDS = {
    SyncOperationType.CREATE: "created",
    SyncOperationType.UPDATE: "updated",
    SyncOperationType.DELETE: "deleted",
}


class JobExecutor:
    def __init__(
        self,
        queue: JobQueue,
        registry: HandlerRegistry,
        credentials: CredentialProvider,
        settings=None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.queue = queue
        self.registry = registry
        self.credentials = credentials
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.clock = clock

    async def execute(self, job: SyncJob) -> Optional[JobStatus]:
        """Run a processing job and record the outcome. Returns the job's new status."""
        start_time = time.monotonic()
        logger.info(f"Executing job {job.id} ({job.kind} for {job.tenant_id}, attempt {job.retry_count + 1}/{job.max_retries})")

        handler = self.registry.get(job.kind)
        if handler is None:
            return await self._fail(job, f"No handler registered for job kind '{job.kind}'", "unknown_kind")

        try:
            if await self._in_cooldown(job):
                logger.info(f"Job {job.id} skipped: {job.kind} ran for {job.tenant_id} within cooldown")
                ok = await self.queue.mark_success(job.id, dict(COOLDOWN_RESULT), expected_retry_count=job.retry_count)
                return JobStatus.SUCCESS if ok else None

            result = await asyncio.wait_for(self._run(job, handler), timeout=self.settings.JOB_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            return await self._fail(job, f"Job timed out after {self.settings.JOB_TIMEOUT_SECONDS:g}s", "timeout")
        except BaseServiceError as e:
            return await self._fail(job, str(e) or type(e).__name__, e.error_code)
        except Exception as e:
            logger.exception(f"Unexpected error executing job {job.id}")
            return await self._fail(job, f"{type(e).__name__}: {e}", "unexpected")

        ok = await self.queue.mark_success(job.id, result, expected_retry_count=job.retry_count)
        if not ok:
            return None
        await self.queue.touch_cooldown(job.tenant_id, job.kind, job.target_key)
        logger.info(f"Job {job.id} completed in {time.monotonic() - start_time:.2f}s: {result}")
        return JobStatus.SUCCESS

    async def _fail(self, job: SyncJob, message: str, error_code: Optional[str]) -> Optional[JobStatus]:
        logger.error(f"Job {job.id} failed [{error_code}]: {message}")
        return await self.queue.mark_failure(job.id, message, error_code, expected_retry_count=job.retry_count)

    async def _in_cooldown(self, job: SyncJob) -> bool:
        window = self.settings.cooldown_for(job.kind)
        if window <= 0:
            return False
        last_run = await self.queue.last_run_at(job.tenant_id, job.kind, job.target_key)
        if last_run is None:
            return False
        return as_utc(self.clock()) - last_run < timedelta(seconds=window)

    async def _get_token(self, job: SyncJob, handler: JobHandler) -> AccessToken:
        try:
            return await self.credentials.get_valid_token(job.tenant_id, handler.provider)
        except CredentialError:
            raise
        except Exception as e:
            raise CredentialError(f"Could not obtain {handler.provider.value} token: {e}") from e

    async def _fetch(self, label: str, job: SyncJob, fetch: Callable[[], Awaitable[List[Dict[str, Any]]]]):
        attempts = max(1, self.settings.JOB_FETCH_ATTEMPTS)
        for attempt in range(attempts):
            try:
                return await fetch()
            except ExternalAPIError as e:
                if attempt + 1 >= attempts:
                    raise
                delay = rate_limit_delay(attempt, getattr(e, "retry_after", None))
                logger.warning(f"Job {job.id}: {label} fetch failed ({e}), retrying in {delay:.1f}s")
                await self.sleep(delay)

    async def _apply(self, job: SyncJob, handler: JobHandler, token: AccessToken, operation: SyncOperation):
        attempts = max(1, self.settings.JOB_RATE_LIMIT_MAX_ATTEMPTS)
        for attempt in range(attempts):
            try:
                return await handler.apply(job, token.token, operation)
            except RateLimitError as e:
                if attempt + 1 >= attempts:
                    raise
                delay = rate_limit_delay(attempt, e.retry_after)
                logger.warning(f"Job {job.id}: rate limited on {operation}, backing off {delay:.1f}s")
                await self.sleep(delay)

    async def _run(self, job: SyncJob, handler: JobHandler) -> Dict[str, int]:
        token = await self._get_token(job, handler)

        local = await self._fetch("local", job, lambda: handler.load_local(job))
        remote = await self._fetch("remote", job, lambda: handler.fetch_remote(job, token.token))

        diff = compute_diff(
            local,
            remote,
            handler.key_field,
            handler.compared_fields,
            target_key=job.target_key,
            optional_fields=handler.optional_fields,
        )
        logger.info(f"Job {job.id} diff: {diff.summary()}")

        counts = {"created": 0, "updated": 0, "deleted": 0}
        failures: List[Dict[str, Any]] = []
        for operation in handler.order_operations(diff.operations):
            try:
                await self._apply(job, handler, token, operation)
            except Exception as e:
                code = e.error_code if isinstance(e, BaseServiceError) else "unexpected"
                logger.warning(f"Job {job.id}: {operation} failed [{code}]: {e}")
                failures.append({"operation": str(operation), "error": str(e), "error_code": code})
                continue
            counts[_COUNT_FIELDS[operation.op_type]] += 1

        if failures:
            completed = sum(counts.values())
            raise PartialApplyError(completed, len(failures), failures=failures, counts=counts)

        return {**counts, "unchanged": diff.unchanged}
