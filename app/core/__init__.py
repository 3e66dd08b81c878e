"""
Core module exports.
"""
from .enums import (
    JobStatus,
    JobKind,
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
)

from .exceptions import (
    BaseServiceError,
    JobQueueError,
    DuplicateActiveJob,
    InvalidJobInput,
    StaleTransitionError,
    PlatformServiceError,
    ExternalAPIError,
    RateLimitError,
    CredentialError,
    SyncError,
    PartialApplyError,
)
