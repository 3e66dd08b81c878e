# app/services/handlers/feed_push.py
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.core.enums import JobKind, Provider
from app.core.exceptions import SyncError
from app.integrations.base import ExternalAPIClient
from app.models.sync_job import SyncJob
from app.schemas.job import FeedItem, FeedPushPayload
from app.services.handlers.base import JobHandler

logger = logging.getLogger(__name__)

InventorySource = Callable[[str], Awaitable[List[Dict[str, Any]]]]


class FeedPushHandler(JobHandler):
    """
    Pushes a tenant's product feed to Google Merchant Center.

    Items come from the job payload (``{"items": [...]}``) when present,
    otherwise from the tenant's inventory via ``inventory_source``.
    """
    kind = JobKind.FEED_PUSH.value
    provider = Provider.GOOGLE_MERCHANT
    key_field = "sku"
    compared_fields = (
        "title",
        "description",
        "price",
        "currency",
        "availability",
        "link",
        "image_link",
        "brand",
        "gtin",
        "google_category_id",
    )

    def __init__(self, client: ExternalAPIClient, inventory_source: Optional[InventorySource] = None):
        super().__init__(client)
        self.inventory_source = inventory_source

    def context(self, job: SyncJob) -> Dict[str, Any]:
        merchant_id = (job.payload or {}).get("merchant_id")
        return {"merchant_id": merchant_id} if merchant_id else {}

    async def load_local(self, job: SyncJob) -> List[Dict[str, Any]]:
        payload = self._parse_payload(FeedPushPayload, job)
        if payload.items is not None:
            items = payload.items
        elif self.inventory_source is not None:
            raw = await self.inventory_source(job.tenant_id)
            try:
                items = [FeedItem.model_validate(r) for r in raw]
            except ValueError as e:
                raise SyncError(f"Inventory source returned invalid items: {e}", error_code="invalid_payload") from e
        else:
            raise SyncError("No feed items in payload and no inventory source configured", error_code="invalid_payload")

        logger.debug(f"Loaded {len(items)} feed items for tenant {job.tenant_id}")
        return [item.model_dump() for item in items]
