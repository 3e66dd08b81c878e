from typing import Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    error_code = "error"

    def __init__(self, message: str = "", error_code: Optional[str] = None):
        super().__init__(message)
        if error_code:
            self.error_code = error_code


class JobQueueError(BaseServiceError):
    """Base exception for job store errors."""
    error_code = "job_queue"


class DuplicateActiveJob(JobQueueError):
    """Raised when an active job already exists for the same tenant/kind/target."""
    error_code = "duplicate_active_job"

    def __init__(self, tenant_id: str, kind: str, target_key: Optional[str], existing_job_id: Optional[str] = None):
        self.tenant_id = tenant_id
        self.kind = kind
        self.target_key = target_key
        self.existing_job_id = existing_job_id
        super().__init__(
            f"Active {kind} job already exists for tenant {tenant_id} "
            f"(target={target_key or '*'}, job={existing_job_id or 'unknown'})"
        )


class InvalidJobInput(JobQueueError):
    """Raised when enqueue is called with malformed input."""
    error_code = "invalid_input"


class StaleTransitionError(JobQueueError):
    """Raised when a status precondition fails (e.g. two workers racing)."""
    error_code = "stale_transition"


class PlatformServiceError(BaseServiceError):
    """Base exception for external platform errors."""
    error_code = "platform"


class ExternalAPIError(PlatformServiceError):
    """Raised when an external API call fails."""
    error_code = "external_api"

    def __init__(self, message: str = "", error_code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, error_code)
        self.status_code = status_code


class RateLimitError(ExternalAPIError):
    """Raised when the provider signals rate limiting."""
    error_code = "rate_limited"

    def __init__(self, message: str = "", retry_after: Optional[float] = None, status_code: Optional[int] = 429):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class CredentialError(PlatformServiceError):
    """Raised when no valid token can be obtained for a tenant/provider."""
    error_code = "auth"


class SyncError(BaseServiceError):
    """Raised when synchronisation with a platform fails."""
    error_code = "sync"


class PartialApplyError(SyncError):
    """Raised when some diff operations were applied and others failed."""
    error_code = "partial_apply"

    def __init__(self, completed: int, failed: int, failures: Optional[list] = None, counts: Optional[dict] = None):
        self.completed = completed
        self.failed = failed
        self.failures = failures or []
        self.counts = counts or {}
        first = f": {self.failures[0]['error']}" if self.failures else ""
        super().__init__(f"Partial apply: {completed} operations completed, {failed} failed{first}")
