# app/services/job_events.py
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import JobStatus, TERMINAL_JOB_STATUSES
from app.models.job_event import JobEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobTransition:
    """A committed job state change, as handed to subscribers."""
    job_id: str
    tenant_id: str
    kind: str
    target_key: Optional[str]
    from_status: Optional[str]
    to_status: str
    retry_count: int = 0
    detail: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.to_status in {s.value for s in TERMINAL_JOB_STATUSES}


JobEventListener = Callable[[JobTransition], Union[Awaitable[None], None]]


def _status_value(status) -> Optional[str]:
    if status is None:
        return None
    return status.value if isinstance(status, JobStatus) else str(status)


class JobEventRecorder:
    """
    Records every job state transition.

    Each transition is written as a JobEvent row inside the caller's
    transaction (so the audit trail commits or rolls back with the state
    change), logged, and - once the caller has committed - fanned out to
    in-process subscribers such as billing or notification consumers.
    """

    def __init__(self, listeners: Optional[Iterable[JobEventListener]] = None):
        self._listeners: List[tuple] = [(listener, None) for listener in (listeners or [])]

    def subscribe(self, listener: JobEventListener, statuses: Optional[Iterable[JobStatus]] = None) -> None:
        """Register a listener, optionally only for transitions into the given statuses."""
        wanted = {_status_value(s) for s in statuses} if statuses else None
        self._listeners.append((listener, wanted))

    async def record(
        self,
        db: AsyncSession,
        job,
        from_status,
        to_status,
        detail: Optional[Dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> JobTransition:
        """Add the audit row to the session and return the transition for later publishing."""
        occurred_at = occurred_at or datetime.now(timezone.utc)
        transition = JobTransition(
            job_id=job.id,
            tenant_id=job.tenant_id,
            kind=job.kind,
            target_key=job.target_key,
            from_status=_status_value(from_status),
            to_status=_status_value(to_status),
            retry_count=job.retry_count or 0,
            detail=dict(detail or {}),
            occurred_at=occurred_at,
        )
        db.add(JobEvent(
            job_id=transition.job_id,
            tenant_id=transition.tenant_id,
            kind=transition.kind,
            from_status=transition.from_status,
            to_status=transition.to_status,
            detail=transition.detail or None,
            created_at=occurred_at,
        ))

        log = logger.warning if transition.to_status == JobStatus.FAILED.value else logger.info
        log(
            "job %s [%s/%s target=%s] %s -> %s (retry=%s)%s",
            transition.job_id,
            transition.tenant_id,
            transition.kind,
            transition.target_key or "*",
            transition.from_status or "new",
            transition.to_status,
            transition.retry_count,
            f" {transition.detail}" if transition.detail else "",
        )
        return transition

    async def publish(self, transitions: Iterable[JobTransition]) -> None:
        """Notify subscribers. A failing subscriber never affects the job or other subscribers."""
        for transition in transitions:
            for listener, wanted in list(self._listeners):
                if wanted is not None and transition.to_status not in wanted:
                    continue
                try:
                    outcome = listener(transition)
                    if inspect.isawaitable(outcome):
                        await outcome
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(
                        f"Job event listener {getattr(listener, '__name__', listener)!r} failed "
                        f"for job {transition.job_id}: {e}",
                        exc_info=True,
                    )


async def get_job_history(db: AsyncSession, job_id: str) -> List[JobEvent]:
    """All audit rows for a job, oldest first."""
    stmt = (
        select(JobEvent)
        .where(JobEvent.job_id == job_id)
        .order_by(JobEvent.created_at.asc(), JobEvent.id.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
