# app/services/handlers/base.py
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import ValidationError

from app.core.enums import Provider
from app.core.exceptions import SyncError
from app.integrations.base import ExternalAPIClient
from app.models.sync_job import SyncJob
from app.services.reconciliation import SyncOperation

logger = logging.getLogger(__name__)


class JobHandler(ABC):
    """
    Knows how to reconcile one job kind.

    A handler supplies the local (desired) records, the key and fields used
    to diff them, and the provider adapter that reads and writes the remote
    side. The executor owns everything else.
    """
    kind: str
    provider: Provider
    key_field: str
    compared_fields: Sequence[str] = ()
    # Compared only when the local record sets them
    optional_fields: Sequence[str] = ()

    def __init__(self, client: ExternalAPIClient):
        self.client = client

    @abstractmethod
    async def load_local(self, job: SyncJob) -> List[Dict[str, Any]]:
        """Desired records for this job."""
        pass

    def context(self, job: SyncJob) -> Dict[str, Any]:
        """Provider addressing derived from the job (account, location...)."""
        return {}

    async def fetch_remote(self, job: SyncJob, token: str) -> List[Dict[str, Any]]:
        keys = [job.target_key] if job.target_key else None
        return await self.client.list_records(job.tenant_id, token, keys=keys, context=self.context(job))

    def order_operations(self, operations: List[SyncOperation]) -> List[SyncOperation]:
        """Order in which diff operations are applied. Creates, updates, then deletes."""
        return list(operations)

    async def apply(self, job: SyncJob, token: str, operation: SyncOperation) -> Optional[Dict[str, Any]]:
        return await self.client.apply(job.tenant_id, token, operation, context=self.context(job))

    def _parse_payload(self, schema, job: SyncJob):
        try:
            return schema.model_validate(job.payload or {})
        except ValidationError as e:
            raise SyncError(f"Invalid {self.kind} payload: {e.errors()[:3]}", error_code="invalid_payload") from e


class HandlerRegistry:
    """Maps job kinds to handlers."""

    def __init__(self, handlers: Optional[Iterable[JobHandler]] = None):
        self._handlers: Dict[str, JobHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: JobHandler) -> None:
        if handler.kind in self._handlers:
            logger.warning(f"Replacing handler for job kind '{handler.kind}'")
        self._handlers[handler.kind] = handler

    def get(self, kind: str) -> Optional[JobHandler]:
        return self._handlers.get(kind)

    @property
    def kinds(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, kind: str) -> bool:
        return kind in self._handlers
