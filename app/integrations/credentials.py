"""
Token caching for tenant OAuth connections.
Access tokens are held in memory only; refresh is delegated to a callable
that talks to whichever token store the deployment uses.
"""

import asyncio
import os
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional, Tuple

from app.core.config import get_settings
from app.core.enums import Provider
from app.core.exceptions import CredentialError
from app.core.utils import utcnow
from app.integrations.base import AccessToken, CredentialProvider

logger = logging.getLogger(__name__)

TokenRefresher = Callable[[str, Provider], Awaitable[AccessToken]]


class CachingCredentialProvider(CredentialProvider):
    """
    Wraps a refresher with an in-memory per-(tenant, provider) cache:
    - Cached tokens are reused until TOKEN_REFRESH_MARGIN_SECONDS before expiry
    - Concurrent callers for the same key share a single refresh
    - Any refresh failure surfaces as CredentialError
    """

    def __init__(
        self,
        refresher: TokenRefresher,
        refresh_margin: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.refresher = refresher
        if refresh_margin is None:
            refresh_margin = timedelta(seconds=get_settings().TOKEN_REFRESH_MARGIN_SECONDS)
        self.refresh_margin = refresh_margin
        self.clock = clock
        self._tokens: Dict[Tuple[str, str], AccessToken] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _cached(self, key: Tuple[str, str]) -> Optional[AccessToken]:
        token = self._tokens.get(key)
        if token and token.is_valid(self.refresh_margin, now=self.clock()):
            return token
        return None

    async def get_valid_token(self, tenant_id: str, provider: Provider) -> AccessToken:
        provider = Provider(provider)
        key = (tenant_id, provider.value)

        token = self._cached(key)
        if token:
            return token

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            token = self._cached(key)
            if token:
                return token

            logger.info(f"Refreshing {provider.value} token for tenant {tenant_id}")
            try:
                token = await self.refresher(tenant_id, provider)
            except CredentialError:
                self._tokens.pop(key, None)
                raise
            except Exception as e:
                self._tokens.pop(key, None)
                raise CredentialError(f"Token refresh failed for {provider.value}/{tenant_id}: {e}") from e

            if not token or not token.token:
                raise CredentialError(f"No {provider.value} token available for tenant {tenant_id}")

            self._tokens[key] = token
            logger.debug(f"Cached {provider.value} token for {tenant_id} (expires: {token.expires_at})")
            return token

    def invalidate(self, tenant_id: str, provider: Provider) -> None:
        """Drop a cached token, e.g. after the provider answered 401."""
        self._tokens.pop((tenant_id, Provider(provider).value), None)

    def clear(self) -> None:
        self._tokens.clear()
        logger.info("Cleared all cached access tokens")


async def env_token_refresher(tenant_id: str, provider: Provider) -> AccessToken:
    """
    Read a pre-issued access token from the environment.

    Looks up ``<PROVIDER>_ACCESS_TOKEN__<TENANT>`` then ``<PROVIDER>_ACCESS_TOKEN``,
    e.g. ``GOOGLE_MERCHANT_ACCESS_TOKEN__ACME``. Used by the standalone worker
    and CLI; deployments with a tenant token store pass their own refresher.
    """
    prefix = f"{Provider(provider).value.upper()}_ACCESS_TOKEN"
    tenant_suffix = "".join(c if c.isalnum() else "_" for c in tenant_id).upper()
    token = os.getenv(f"{prefix}__{tenant_suffix}") or os.getenv(prefix)
    if not token:
        raise CredentialError(f"Missing {prefix} for tenant {tenant_id}")
    return AccessToken(token=token)
