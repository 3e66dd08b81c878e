"""
Google Business Profile (Business Information API v1) category adapter.

GBP stores a location's categories as one object (a primary category plus
additional ones), so every operation is a read-modify-write of that object.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from app.core.config import get_settings
from app.core.enums import Provider, SyncOperationType
from app.core.exceptions import ExternalAPIError
from app.core.utils import normalize_key
from app.integrations.base import ExternalAPIClient
from app.integrations.http import GoogleAPIClient

logger = logging.getLogger(__name__)

CATEGORY_PREFIX = "categories/"


def _category_id(name: str) -> str:
    return name[len(CATEGORY_PREFIX):] if name.startswith(CATEGORY_PREFIX) else name


def categories_to_records(categories: Dict[str, Any]) -> List[Dict[str, Any]]:
    records = []
    primary = categories.get("primaryCategory")
    if primary:
        records.append({
            "category_id": _category_id(primary.get("name", "")),
            "display_name": primary.get("displayName"),
            "primary": True,
        })
    for extra in categories.get("additionalCategories", []) or []:
        records.append({
            "category_id": _category_id(extra.get("name", "")),
            "display_name": extra.get("displayName"),
            "primary": False,
        })
    return records


def records_to_categories(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    def resource(record):
        body = {"name": f"{CATEGORY_PREFIX}{record['category_id']}"}
        if record.get("display_name"):
            body["displayName"] = record["display_name"]
        return body

    primary = next((r for r in records if r.get("primary")), None)
    categories: Dict[str, Any] = {
        "additionalCategories": [resource(r) for r in records if r is not primary],
    }
    if primary is not None:
        categories["primaryCategory"] = resource(primary)
    return categories


class GoogleBusinessClient(GoogleAPIClient, ExternalAPIClient):
    provider = Provider.GOOGLE_BUSINESS

    def __init__(
        self,
        location_ids: Optional[Dict[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        settings=None,
    ):
        settings = settings or get_settings()
        super().__init__(settings.GOOGLE_BUSINESS_API_URL, http_client=http_client)
        self.location_ids = location_ids or {}

    def _location(self, tenant_id: str, context: Optional[Dict[str, Any]]) -> str:
        location_id = (context or {}).get("location_id") or self.location_ids.get(tenant_id)
        if not location_id:
            raise ExternalAPIError(f"No Business Profile location configured for tenant {tenant_id}", error_code="config")
        return location_id if location_id.startswith("locations/") else f"locations/{location_id}"

    async def _fetch(self, location: str, token: str) -> List[Dict[str, Any]]:
        response = await self._make_request("GET", location, token, params={"readMask": "categories"})
        return categories_to_records(response.get("categories") or {})

    async def list_records(
        self,
        tenant_id: str,
        token: str,
        keys: Optional[Iterable[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        records = await self._fetch(self._location(tenant_id, context), token)
        if keys is not None:
            wanted = {normalize_key(k) for k in keys}
            records = [r for r in records if normalize_key(r["category_id"]) in wanted]
        logger.info(f"Fetched {len(records)} GBP categories for tenant {tenant_id}")
        return records

    async def apply(self, tenant_id: str, token: str, operation, context: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        location = self._location(tenant_id, context)
        current = await self._fetch(location, token)
        remaining = [r for r in current if normalize_key(r["category_id"]) != operation.key]

        if operation.op_type == SyncOperationType.DELETE:
            updated = remaining
        else:
            record = dict(operation.record)
            if record.get("primary"):
                # Only one primary category per location
                remaining = [{**r, "primary": False} for r in remaining]
            updated = remaining + [record]

        await self._make_request(
            "PATCH",
            location,
            token,
            data={"categories": records_to_categories(updated)},
            params={"updateMask": "categories"},
        )
        return operation.record
