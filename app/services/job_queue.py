"""Durable job store: enqueue, claim and state transitions for sync jobs."""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import extract, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.enums import JobStatus, ACTIVE_JOB_STATUSES
from app.core.exceptions import DuplicateActiveJob, InvalidJobInput, StaleTransitionError
from app.core.utils import as_utc, utcnow
from app.models.job_cooldown import JobCooldown
from app.models.sync_job import SyncJob
from app.schemas.job import JobStats
from app.services.backoff import next_retry_delay
from app.services.job_events import JobEventRecorder, JobTransition

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000
_ACTIVE_VALUES = [s.value for s in ACTIVE_JOB_STATUSES]


class JobQueue:
    """
    Job store backed by the sync_jobs table.

    Every mutation is a single-row UPDATE guarded by a status precondition
    (compare-and-swap). A precondition that no longer holds is logged and
    rejected, never overwritten. Each public method runs in its own short
    transaction so row locks taken while claiming are released immediately.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        events: Optional[JobEventRecorder] = None,
        settings=None,
        clock: Callable[[], datetime] = utcnow,
        known_kinds: Optional[Iterable[str]] = None,
    ):
        if session_factory is None:
            from app.database import async_session
            session_factory = async_session
        self.session_factory = session_factory
        self.events = events or JobEventRecorder()
        self.settings = settings or get_settings()
        self.clock = clock
        self.known_kinds = set(known_kinds) if known_kinds else None

    def _now(self) -> datetime:
        return as_utc(self.clock())

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    def _validate(
        self,
        tenant_id: str,
        kind: str,
        target_key: Optional[str],
        payload: Optional[Dict[str, Any]],
        max_retries: Optional[int],
    ) -> Tuple[str, str, Optional[str], Dict[str, Any], int]:
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise InvalidJobInput("tenant_id is required")
        if not isinstance(kind, str) or not kind.strip():
            raise InvalidJobInput("kind is required")
        kind = kind.strip()
        if self.known_kinds is not None and kind not in self.known_kinds:
            raise InvalidJobInput(f"Unknown job kind '{kind}'")
        if target_key is not None:
            if not isinstance(target_key, str):
                raise InvalidJobInput("target_key must be a string")
            target_key = target_key.strip() or None
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidJobInput("payload must be a mapping")
        if max_retries is None:
            max_retries = self.settings.JOB_MAX_RETRIES
        if not isinstance(max_retries, int) or max_retries < 1:
            raise InvalidJobInput("max_retries must be a positive integer")
        return tenant_id.strip(), kind, target_key, dict(payload), max_retries

    async def _find_active(self, db: AsyncSession, tenant_id: str, kind: str, target_key: Optional[str]) -> Optional[SyncJob]:
        target_clause = SyncJob.target_key.is_(None) if target_key is None else SyncJob.target_key == target_key
        stmt = (
            select(SyncJob)
            .where(
                SyncJob.tenant_id == tenant_id,
                SyncJob.kind == kind,
                target_clause,
                SyncJob.status.in_(_ACTIVE_VALUES),
            )
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def enqueue(
        self,
        tenant_id: str,
        kind: str,
        target_key: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> SyncJob:
        """
        Insert a queued job.

        Raises DuplicateActiveJob when a queued/processing job already exists
        for the same tenant, kind and target key. Enqueue never runs the job.
        """
        tenant_id, kind, target_key, payload, max_retries = self._validate(
            tenant_id, kind, target_key, payload, max_retries
        )
        now = self._now()

        async with self.session_factory() as db:
            existing = await self._find_active(db, tenant_id, kind, target_key)
            if existing is not None:
                raise DuplicateActiveJob(tenant_id, kind, target_key, existing.id)

            job = SyncJob(
                tenant_id=tenant_id,
                kind=kind,
                target_key=target_key,
                payload=payload,
                status=JobStatus.QUEUED.value,
                retry_count=0,
                max_retries=max_retries,
                created_at=now,
                updated_at=now,
            )
            db.add(job)
            try:
                await db.flush()
            except IntegrityError:
                # Lost an insert race against another enqueue for the same key
                await db.rollback()
                async with self.session_factory() as lookup:
                    winner = await self._find_active(lookup, tenant_id, kind, target_key)
                raise DuplicateActiveJob(tenant_id, kind, target_key, winner.id if winner else None) from None

            transition = await self.events.record(
                db, job, None, JobStatus.QUEUED,
                {"target_key": target_key, "max_retries": max_retries},
                occurred_at=now,
            )
            await db.commit()

        await self.events.publish([transition])
        return job

    async def enqueue_idempotent(
        self,
        tenant_id: str,
        kind: str,
        target_key: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> Tuple[SyncJob, bool]:
        """Enqueue, treating an existing active job as success. Returns (job, created)."""
        try:
            job = await self.enqueue(tenant_id, kind, target_key, payload, max_retries)
            return job, True
        except DuplicateActiveJob as dup:
            logger.info(f"Coalesced enqueue into active job {dup.existing_job_id} ({kind} for {tenant_id})")
            existing = await self.get_job(dup.existing_job_id) if dup.existing_job_id else None
            if existing is None:
                raise
            return existing, False

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim_ready(self, limit: int) -> List[SyncJob]:
        """
        Atomically claim up to `limit` ready jobs, oldest first.

        Ready means queued with no next_retry_at or one in the past. Rows
        locked by a concurrent claimer are skipped rather than waited on, and
        each row is flipped with a status-guarded UPDATE, so no two callers
        ever get the same job.
        """
        if limit <= 0:
            return []
        now = self._now()
        transitions: List[JobTransition] = []

        async with self.session_factory() as db:
            stmt = (
                select(SyncJob.id)
                .where(
                    SyncJob.status == JobStatus.QUEUED.value,
                    or_(SyncJob.next_retry_at.is_(None), SyncJob.next_retry_at <= now),
                )
                .order_by(SyncJob.created_at.asc(), SyncJob.id.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            candidate_ids = list((await db.execute(stmt)).scalars().all())

            claimed_ids = []
            for job_id in candidate_ids:
                result = await db.execute(
                    update(SyncJob)
                    .where(SyncJob.id == job_id, SyncJob.status == JobStatus.QUEUED.value)
                    .values(status=JobStatus.PROCESSING.value, last_attempt_at=now, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed_ids.append(job_id)
                else:
                    logger.debug(f"Job {job_id} was claimed by another worker")

            if not claimed_ids:
                await db.commit()
                return []

            jobs_stmt = (
                select(SyncJob)
                .where(SyncJob.id.in_(claimed_ids))
                .order_by(SyncJob.created_at.asc(), SyncJob.id.asc())
                .execution_options(populate_existing=True)
            )
            jobs = list((await db.execute(jobs_stmt)).scalars().all())
            for job in jobs:
                transitions.append(await self.events.record(
                    db, job, JobStatus.QUEUED, JobStatus.PROCESSING,
                    {"attempt": job.retry_count + 1},
                    occurred_at=now,
                ))
            await db.commit()

        await self.events.publish(transitions)
        return jobs

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def _load_processing(self, db: AsyncSession, job_id: str, expected_retry_count: Optional[int]) -> SyncJob:
        job = await db.get(SyncJob, job_id, with_for_update=True, populate_existing=True)
        if job is None:
            raise StaleTransitionError(f"Job {job_id} does not exist")
        if job.status != JobStatus.PROCESSING.value:
            raise StaleTransitionError(f"Job {job_id} is {job.status}, expected processing")
        # Every requeue bumps retry_count, so it identifies the claim
        if expected_retry_count is not None and job.retry_count != expected_retry_count:
            raise StaleTransitionError(
                f"Job {job_id} was re-claimed (attempt {job.retry_count + 1}, caller holds attempt {expected_retry_count + 1})"
            )
        return job

    async def mark_success(
        self,
        job_id: str,
        result: Optional[Dict[str, Any]] = None,
        expected_retry_count: Optional[int] = None,
    ) -> bool:
        """
        processing -> success. Returns False if the job was no longer processing,
        or, when expected_retry_count is given, no longer held by that claim.
        """
        now = self._now()
        async with self.session_factory() as db:
            try:
                job = await self._load_processing(db, job_id, expected_retry_count)
                outcome = await db.execute(
                    update(SyncJob)
                    .where(
                        SyncJob.id == job_id,
                        SyncJob.status == JobStatus.PROCESSING.value,
                        SyncJob.retry_count == job.retry_count,
                    )
                    .values(
                        status=JobStatus.SUCCESS.value,
                        result=result or {},
                        completed_at=now,
                        updated_at=now,
                        next_retry_at=None,
                        error_message=None,
                        error_code=None,
                    )
                    .execution_options(synchronize_session=False)
                )
                if outcome.rowcount != 1:
                    raise StaleTransitionError(f"Job {job_id} changed state during completion")
            except StaleTransitionError as e:
                await db.rollback()
                logger.warning(f"Rejected success for job {job_id}: {e}")
                return False

            await db.refresh(job)
            transition = await self.events.record(
                db, job, JobStatus.PROCESSING, JobStatus.SUCCESS, {"result": result or {}}, occurred_at=now
            )
            await db.commit()

        await self.events.publish([transition])
        return True

    async def mark_failure(
        self,
        job_id: str,
        error_message: str,
        error_code: Optional[str] = None,
        expected_retry_count: Optional[int] = None,
    ) -> Optional[JobStatus]:
        """
        Record a failed attempt.

        While attempts remain the job goes back to queued with retry_count+1
        and next_retry_at from the backoff policy; the attempt that reaches
        max_retries makes it failed. Returns the new status, or None if the
        job was no longer processing (or no longer held by the claim named by
        expected_retry_count).
        """
        now = self._now()
        message = (error_message or "Unknown error")[:MAX_ERROR_LENGTH]

        async with self.session_factory() as db:
            try:
                job = await self._load_processing(db, job_id, expected_retry_count)
                observed_retries = job.retry_count
                attempts = observed_retries + 1

                if attempts < job.max_retries:
                    new_status = JobStatus.QUEUED
                    next_retry_at = now + next_retry_delay(observed_retries)
                    completed_at = None
                else:
                    new_status = JobStatus.FAILED
                    next_retry_at = None
                    completed_at = now

                outcome = await db.execute(
                    update(SyncJob)
                    .where(
                        SyncJob.id == job_id,
                        SyncJob.status == JobStatus.PROCESSING.value,
                        SyncJob.retry_count == observed_retries,
                    )
                    .values(
                        status=new_status.value,
                        retry_count=attempts,
                        next_retry_at=next_retry_at,
                        completed_at=completed_at,
                        error_message=message,
                        error_code=error_code,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if outcome.rowcount != 1:
                    raise StaleTransitionError(f"Job {job_id} changed state during failure handling")
            except StaleTransitionError as e:
                await db.rollback()
                logger.warning(f"Rejected failure for job {job_id}: {e}")
                return None

            await db.refresh(job)
            detail = {"error_code": error_code, "error_message": message[:500], "attempt": attempts}
            if next_retry_at is not None:
                detail["next_retry_at"] = next_retry_at.isoformat()
            transition = await self.events.record(
                db, job, JobStatus.PROCESSING, new_status, detail, occurred_at=now
            )
            await db.commit()

        await self.events.publish([transition])
        return new_status

    async def reap_stale(self, older_than: Optional[timedelta] = None) -> int:
        """
        Feed abandoned processing jobs back through the failure path.

        A job still processing after `older_than` (default
        JOB_STALE_AFTER_MINUTES) belongs to a worker that died or hung. It is
        retried or failed exactly like any other failed attempt.
        """
        if older_than is None:
            older_than = timedelta(minutes=self.settings.JOB_STALE_AFTER_MINUTES)
        cutoff = self._now() - older_than

        async with self.session_factory() as db:
            stmt = (
                select(SyncJob.id, SyncJob.retry_count)
                .where(
                    SyncJob.status == JobStatus.PROCESSING.value,
                    SyncJob.last_attempt_at < cutoff,
                )
                .order_by(SyncJob.last_attempt_at.asc())
                .with_for_update(skip_locked=True)
            )
            stale = list((await db.execute(stmt)).all())
            await db.commit()

        reaped = 0
        minutes = int(older_than.total_seconds() // 60)
        for job_id, retry_count in stale:
            status = await self.mark_failure(
                job_id,
                f"Job abandoned: still processing after {minutes} minutes",
                "abandoned",
                expected_retry_count=retry_count,
            )
            if status is not None:
                reaped += 1
        if reaped:
            logger.warning(f"Reaped {reaped} abandoned job(s)")
        return reaped

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> Optional[SyncJob]:
        async with self.session_factory() as db:
            return await db.get(SyncJob, job_id)

    async def list_jobs(
        self,
        tenant_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[SyncJob]:
        """Most recent jobs first."""
        stmt = select(SyncJob)
        if tenant_id:
            stmt = stmt.where(SyncJob.tenant_id == tenant_id)
        if status:
            stmt = stmt.where(SyncJob.status == JobStatus(status).value)
        if kind:
            stmt = stmt.where(SyncJob.kind == kind)
        stmt = stmt.order_by(SyncJob.created_at.desc()).limit(limit).offset(offset)
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def count_ready(self) -> int:
        """How many jobs could be claimed right now (without locking)."""
        now = self._now()
        stmt = select(func.count(SyncJob.id)).where(
            SyncJob.status == JobStatus.QUEUED.value,
            or_(SyncJob.next_retry_at.is_(None), SyncJob.next_retry_at <= now),
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar() or 0

    async def get_job_stats(self, tenant_id: Optional[str] = None) -> JobStats:
        """Status counts, success rate and mean duration of successful jobs."""
        counts_stmt = select(SyncJob.status, func.count(SyncJob.id)).group_by(SyncJob.status)
        if tenant_id:
            counts_stmt = counts_stmt.where(SyncJob.tenant_id == tenant_id)

        async with self.session_factory() as db:
            rows = (await db.execute(counts_stmt)).all()
            counts = {status: count for status, count in rows}

            if db.get_bind().dialect.name == "postgresql":
                duration = extract("epoch", SyncJob.completed_at - SyncJob.created_at)
            else:
                duration = (func.julianday(SyncJob.completed_at) - func.julianday(SyncJob.created_at)) * 86400.0
            avg_stmt = select(func.avg(duration)).where(
                SyncJob.status == JobStatus.SUCCESS.value,
                SyncJob.completed_at.is_not(None),
            )
            if tenant_id:
                avg_stmt = avg_stmt.where(SyncJob.tenant_id == tenant_id)
            avg_duration = (await db.execute(avg_stmt)).scalar()

        total = sum(counts.values())
        success = counts.get(JobStatus.SUCCESS.value, 0)
        return JobStats(
            total=total,
            queued=counts.get(JobStatus.QUEUED.value, 0),
            processing=counts.get(JobStatus.PROCESSING.value, 0),
            success=success,
            failed=counts.get(JobStatus.FAILED.value, 0),
            success_rate_pct=round(success / total * 100, 2) if total else 0.0,
            avg_duration_seconds=round(float(avg_duration), 3) if avg_duration is not None else 0.0,
        )

    # ------------------------------------------------------------------
    # Cooldown
    # ------------------------------------------------------------------

    @staticmethod
    def _scope_keys(target_key: Optional[str]) -> List[str]:
        # A whole-resource run also covers every single-key run
        return [""] if not target_key else [target_key, ""]

    async def last_run_at(self, tenant_id: str, kind: str, target_key: Optional[str] = None) -> Optional[datetime]:
        """Most recent successful real run covering this scope."""
        stmt = select(func.max(JobCooldown.last_run_at)).where(
            JobCooldown.tenant_id == tenant_id,
            JobCooldown.kind == kind,
            JobCooldown.scope_key.in_(self._scope_keys(target_key)),
        )
        async with self.session_factory() as db:
            value = (await db.execute(stmt)).scalar()
        return as_utc(value)

    async def touch_cooldown(
        self, tenant_id: str, kind: str, target_key: Optional[str] = None, at: Optional[datetime] = None
    ) -> None:
        at = as_utc(at) if at else self._now()
        scope_key = target_key or ""
        async with self.session_factory() as db:
            dialect = db.get_bind().dialect.name
            if dialect in ("postgresql", "sqlite"):
                if dialect == "postgresql":
                    from sqlalchemy.dialects.postgresql import insert as dialect_insert
                else:
                    from sqlalchemy.dialects.sqlite import insert as dialect_insert
                stmt = dialect_insert(JobCooldown).values(
                    tenant_id=tenant_id, kind=kind, scope_key=scope_key, last_run_at=at
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[JobCooldown.tenant_id, JobCooldown.kind, JobCooldown.scope_key],
                    set_={"last_run_at": at},
                )
                await db.execute(stmt)
            else:
                row = await db.get(JobCooldown, (tenant_id, kind, scope_key))
                if row is None:
                    db.add(JobCooldown(tenant_id=tenant_id, kind=kind, scope_key=scope_key, last_run_at=at))
                else:
                    row.last_run_at = at
            await db.commit()
