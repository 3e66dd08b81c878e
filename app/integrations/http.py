import json
import logging
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx

from app.core.exceptions import ExternalAPIError, RateLimitError
from app.core.utils import utcnow

logger = logging.getLogger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After is either delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max((when - utcnow()).total_seconds(), 0.0)


class GoogleAPIClient:
    """
    Shared request logic for the Google REST adapters.

    Every non-2xx answer is raised: 429 as RateLimitError (with the
    Retry-After hint), everything else as ExternalAPIError carrying the
    status code. Transport failures become ExternalAPIError too.
    """

    def __init__(self, base_url: str, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    def _get_headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        token: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        logger.debug(f"Making {method} request to {url}")
        if params:
            logger.debug(f"Params: {params}")
        if data:
            logger.debug(f"Data: {json.dumps(data, default=str)[:500]}...")

        try:
            response = await self._http().request(
                method=method,
                url=url,
                headers=self._get_headers(token),
                json=data,
                params=params,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Timeout calling {url}: {e}")
            raise ExternalAPIError(f"Request timed out: {e}", error_code="timeout") from e
        except httpx.RequestError as e:
            logger.error(f"Network error calling {url}: {e}")
            raise ExternalAPIError(f"Network error: {e}", error_code="network") from e

        if response.status_code == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(f"Rate limited by {url} (retry after: {retry_after})")
            raise RateLimitError(f"Rate limited: {response.text[:200]}", retry_after=retry_after)

        if response.status_code >= 400:
            logger.error(f"API error {response.status_code} from {url}: {response.text[:500]}")
            raise ExternalAPIError(
                f"Request failed ({response.status_code}): {response.text[:500]}",
                error_code=f"http_{response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ExternalAPIError(f"Invalid JSON from {url}", error_code="bad_response") from e
