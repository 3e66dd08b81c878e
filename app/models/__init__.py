from .sync_job import SyncJob
from .job_event import JobEvent
from .job_cooldown import JobCooldown

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'SyncJob',
    'JobEvent',
    'JobCooldown',
]
