"""
Shared enums and constants used across the job engine.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Lifecycle states of a sync job"""
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class JobKind(str, Enum):
    """Built-in job kinds. The handler registry accepts any string kind."""
    FEED_PUSH = "feed-push"
    CATEGORY_MIRROR = "category-mirror"


class Provider(str, Enum):
    """External providers a job can synchronise against."""
    GOOGLE_MERCHANT = "google_merchant"
    GOOGLE_BUSINESS = "google_business"


class SyncOperationType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


ACTIVE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.PROCESSING)
TERMINAL_JOB_STATUSES = (JobStatus.SUCCESS, JobStatus.FAILED)
