# app/schemas/job.py
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.core.enums import JobStatus
from app.schemas.base import TimestampedSchema


class JobRead(TimestampedSchema):
    """Read model handed to dashboards / CLI output."""
    id: str
    tenant_id: str
    kind: str
    target_key: Optional[str] = None
    status: JobStatus
    retry_count: int
    max_retries: int
    last_attempt_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    completed_at: Optional[datetime] = None


class JobStats(BaseModel):
    total: int = 0
    queued: int = 0
    processing: int = 0
    success: int = 0
    failed: int = 0
    success_rate_pct: float = 0.0
    avg_duration_seconds: float = 0.0


class FeedItem(BaseModel):
    """A single product as pushed to Google Merchant Center."""
    model_config = ConfigDict(extra="ignore")

    sku: str
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = "USD"
    availability: Optional[str] = "in stock"
    link: Optional[str] = None
    image_link: Optional[str] = None
    brand: Optional[str] = None
    gtin: Optional[str] = None
    google_category_id: Optional[str] = None

    @field_validator("sku")
    @classmethod
    def sku_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("sku must not be blank")
        return value.strip()

    @field_validator("price")
    @classmethod
    def price_to_cents(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        # Merchant Center stores two decimal places
        if value is None:
            return None
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @model_validator(mode="after")
    def currency_follows_price(self) -> "FeedItem":
        # Currency only travels inside the price object
        if self.price is None:
            self.currency = None
        elif not self.currency:
            self.currency = "USD"
        return self


class CategoryAssignment(BaseModel):
    """A GBP category assigned to a tenant location."""
    model_config = ConfigDict(extra="ignore")

    category_id: str
    display_name: Optional[str] = None
    primary: bool = False


class FeedPushPayload(BaseModel):
    items: Optional[List[FeedItem]] = None


class CategoryMirrorPayload(BaseModel):
    location_id: Optional[str] = None
    categories: List[CategoryAssignment] = Field(default_factory=list)
