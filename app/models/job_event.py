# app/models/job_event.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Index

from app.database import Base
from app.models.sync_job import JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobEvent(Base):
    """
    Append-only audit record of a single job state transition.

    from_status is NULL for the creation event. Rows are never updated.
    """
    __tablename__ = "job_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(36), nullable=False, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    kind = Column(String(64), nullable=False)
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=False, index=True)
    detail = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    __table_args__ = (
        Index("ix_job_events_job_created", job_id, created_at),
    )

    def __repr__(self):
        return f"<JobEvent job={self.job_id} {self.from_status} -> {self.to_status}>"
