# app/services/handlers/category_mirror.py
from typing import Any, Dict, List

from app.core.enums import JobKind, Provider
from app.models.sync_job import SyncJob
from app.schemas.job import CategoryMirrorPayload
from app.services.handlers.base import JobHandler
from app.services.reconciliation import SyncOperation


class CategoryMirrorHandler(JobHandler):
    """Mirrors a tenant's storefront categories onto their Business Profile location."""
    kind = JobKind.CATEGORY_MIRROR.value
    provider = Provider.GOOGLE_BUSINESS
    key_field = "category_id"
    compared_fields = ("display_name", "primary")
    # GBP fills in display names for every category it knows
    optional_fields = ("display_name",)

    def context(self, job: SyncJob) -> Dict[str, Any]:
        location_id = (job.payload or {}).get("location_id")
        return {"location_id": location_id} if location_id else {}

    async def load_local(self, job: SyncJob) -> List[Dict[str, Any]]:
        payload = self._parse_payload(CategoryMirrorPayload, job)
        return [category.model_dump() for category in payload.categories]

    def order_operations(self, operations: List[SyncOperation]) -> List[SyncOperation]:
        """
        Apply the new primary category first.

        A location must always have a primary category, so demoting the old
        one before the new one is promoted would write a categories object
        without one.
        """
        promotions, rest = [], []
        for op in operations:
            if op.record and op.record.get("primary"):
                promotions.append(op)
            else:
                rest.append(op)
        return promotions + rest
