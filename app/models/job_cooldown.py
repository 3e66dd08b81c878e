# app/models/job_cooldown.py
from sqlalchemy import Column, DateTime, String

from app.database import Base


class JobCooldown(Base):
    """
    Last successful real run per tenant/kind/scope.

    scope_key is the job's target_key, or "" for a whole-resource run. Kept in
    the database so every worker process sees the same cooldown window.
    """
    __tablename__ = "job_cooldowns"

    tenant_id = Column(String(64), primary_key=True)
    kind = Column(String(64), primary_key=True)
    scope_key = Column(String(255), primary_key=True, default="")
    last_run_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<JobCooldown {self.tenant_id}/{self.kind}/{self.scope_key or '*'} at {self.last_run_at}>"
