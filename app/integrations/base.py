from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from app.core.enums import Provider
from app.core.utils import as_utc, utcnow


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: Optional[datetime] = None

    def is_valid(self, margin: timedelta = timedelta(0), now: Optional[datetime] = None) -> bool:
        if not self.token:
            return False
        if self.expires_at is None:
            return True
        return (now or utcnow()) < as_utc(self.expires_at) - margin


class CredentialProvider(ABC):
    """Supplies per-tenant OAuth tokens for a provider."""

    @abstractmethod
    async def get_valid_token(self, tenant_id: str, provider: Provider) -> AccessToken:
        """
        Return a token good for at least the next request.

        Raises CredentialError when the tenant has no connection for the
        provider or the refresh is rejected.
        """
        pass


class ExternalAPIClient(ABC):
    """
    Provider adapter used by the executor.

    Records cross this boundary as plain dicts in the handler's local shape,
    so the diff can compare them field for field.
    """
    provider: Provider

    @abstractmethod
    async def list_records(
        self,
        tenant_id: str,
        token: str,
        keys: Optional[Iterable[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Current provider-side records, optionally only the given keys.

        ``context`` carries handler-resolved addressing such as a location id.
        """
        pass

    @abstractmethod
    async def apply(
        self, tenant_id: str, token: str, operation, context: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Apply one SyncOperation.

        Raises RateLimitError when throttled and ExternalAPIError for any
        other provider failure.
        """
        pass

    async def close(self) -> None:
        pass
