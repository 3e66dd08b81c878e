# app/models/sync_job.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text, JSON, func
from sqlalchemy.dialects.postgresql import JSONB

from app.core.enums import JobStatus, ACTIVE_JOB_STATUSES
from app.core.utils import as_utc
from app.database import Base

# JSONB on Postgres, plain JSON everywhere else
JSONType = JSON().with_variant(JSONB(astext_type=Text()), "postgresql")

_ACTIVE_VALUES = [s.value for s in ACTIVE_JOB_STATUSES]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class SyncJob(Base):
    """
    One unit of asynchronous reconciliation work against an external system.

    The row is the source of truth for the queue: status moves
    queued -> processing -> (success | queued | failed) and never backwards
    out of a terminal state.
    """

    __tablename__ = "sync_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(64), nullable=False, index=True)
    target_key = Column(String(255), nullable=True)  # NULL = whole resource
    status = Column(String(32), nullable=False, default=JobStatus.QUEUED.value, index=True)

    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=5)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)

    payload = Column(JSONType, nullable=False, default=dict)
    result = Column(JSONType, nullable=True)
    error_message = Column(Text, nullable=True)
    error_code = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # At most one queued/processing job per tenant/kind/target
        Index(
            "uq_sync_jobs_active_target",
            tenant_id,
            kind,
            func.coalesce(target_key, ""),
            unique=True,
            postgresql_where=status.in_(_ACTIVE_VALUES),
            sqlite_where=status.in_(_ACTIVE_VALUES),
        ),
        Index("ix_sync_jobs_ready", status, next_retry_at, created_at),
        CheckConstraint("retry_count <= max_retries", name="ck_sync_jobs_retry_bound"),
    )

    @property
    def duration_seconds(self):
        if not self.completed_at or not self.created_at:
            return None
        return (as_utc(self.completed_at) - as_utc(self.created_at)).total_seconds()

    def __repr__(self) -> str:
        return (f"<SyncJob(id={self.id}, tenant={self.tenant_id}, kind={self.kind}, "
                f"target={self.target_key}, status={self.status}, retries={self.retry_count}/{self.max_retries})>")
