"""
Google Merchant Center (Content API v2.1) product feed adapter.

Products are addressed by offerId, which is the tenant's SKU. Remote
products are mapped back into the local feed item shape so they diff
cleanly against payload items.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import httpx

from app.core.config import get_settings
from app.core.enums import Provider, SyncOperationType
from app.core.exceptions import ExternalAPIError
from app.core.utils import normalize_key
from app.integrations.base import ExternalAPIClient
from app.integrations.http import GoogleAPIClient

logger = logging.getLogger(__name__)

PAGE_SIZE = 250


def item_to_product(item: Dict[str, Any], content_language: str, target_country: str) -> Dict[str, Any]:
    """Local feed item -> Content API product resource."""
    product: Dict[str, Any] = {
        "offerId": item["sku"],
        "channel": "online",
        "contentLanguage": content_language,
        "targetCountry": target_country,
        "title": item.get("title"),
        "description": item.get("description"),
        "link": item.get("link"),
        "imageLink": item.get("image_link"),
        "brand": item.get("brand"),
        "gtin": item.get("gtin"),
        "googleProductCategory": item.get("google_category_id"),
        "availability": item.get("availability"),
    }
    if item.get("price") is not None:
        product["price"] = {
            "value": f"{Decimal(str(item['price'])):.2f}",
            "currency": item.get("currency") or "USD",
        }
    return {k: v for k, v in product.items() if v is not None}


def product_to_item(product: Dict[str, Any]) -> Dict[str, Any]:
    """Content API product resource -> local feed item shape."""
    price = product.get("price") or {}
    return {
        "sku": product.get("offerId"),
        "title": product.get("title"),
        "description": product.get("description"),
        "price": price.get("value"),
        "currency": price.get("currency"),
        "availability": product.get("availability"),
        "link": product.get("link"),
        "image_link": product.get("imageLink"),
        "brand": product.get("brand"),
        "gtin": product.get("gtin"),
        "google_category_id": product.get("googleProductCategory"),
        "product_id": product.get("id"),
    }


class GoogleMerchantClient(GoogleAPIClient, ExternalAPIClient):
    provider = Provider.GOOGLE_MERCHANT

    def __init__(
        self,
        merchant_ids: Optional[Dict[str, str]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        settings=None,
    ):
        settings = settings or get_settings()
        super().__init__(settings.GOOGLE_MERCHANT_API_URL, http_client=http_client)
        self.merchant_ids = merchant_ids or {}
        self.default_merchant_id = settings.GOOGLE_MERCHANT_ID
        self.content_language = settings.GOOGLE_FEED_CONTENT_LANGUAGE
        self.target_country = settings.GOOGLE_FEED_TARGET_COUNTRY

    def _merchant_id(self, tenant_id: str, context: Optional[Dict[str, Any]]) -> str:
        merchant_id = (context or {}).get("merchant_id") or self.merchant_ids.get(tenant_id) or self.default_merchant_id
        if not merchant_id:
            raise ExternalAPIError(f"No Merchant Center account configured for tenant {tenant_id}", error_code="config")
        return merchant_id

    def _product_id(self, sku: str) -> str:
        return f"online:{self.content_language}:{self.target_country}:{sku}"

    async def list_records(
        self,
        tenant_id: str,
        token: str,
        keys: Optional[Iterable[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        merchant_id = self._merchant_id(tenant_id, context)
        wanted = {normalize_key(k) for k in keys} if keys is not None else None

        items: List[Dict[str, Any]] = []
        page_token = None
        while True:
            params: Dict[str, Any] = {"maxResults": PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = await self._make_request("GET", f"{merchant_id}/products", token, params=params)
            for product in response.get("resources", []):
                item = product_to_item(product)
                if wanted is None or normalize_key(item["sku"]) in wanted:
                    items.append(item)
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.info(f"Fetched {len(items)} Merchant Center products for tenant {tenant_id}")
        return items

    async def apply(self, tenant_id: str, token: str, operation, context: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        merchant_id = self._merchant_id(tenant_id, context)

        if operation.op_type == SyncOperationType.DELETE:
            external = operation.external or {}
            product_id = external.get("product_id") or self._product_id(external.get("sku") or operation.key)
            await self._make_request("DELETE", f"{merchant_id}/products/{product_id}", token)
            return None

        body = item_to_product(operation.record, self.content_language, self.target_country)
        # products.insert upserts by offerId, which covers both create and full update
        response = await self._make_request("POST", f"{merchant_id}/products", token, data=body)
        return product_to_item(response) if response else None
