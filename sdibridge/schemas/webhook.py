"""
Shopify Webhook Schemas
"""
from pydantic import BaseModel, field_validator
from typing import Optional, List, Any
from datetime import datetime, timezone
from decimal import Decimal


def _id_to_str(value: Any) -> Any:
    # Shopify sends numeric ids; we key everything on strings
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ShopifyAddress(BaseModel):
    company: Optional[str] = None
    country_code: Optional[str] = None
    province: Optional[str] = None
    city: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    zip: Optional[str] = None

    @field_validator("country_code")
    @classmethod
    def upper_country(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v and v.strip() else None


class ShopifyCustomerRef(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _id_to_str(v)


class ShopifyCustomerWebhook(BaseModel):
    """customers/create and customers/update payload"""
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    addresses: List[ShopifyAddress] = []

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        return _id_to_str(v)

    @property
    def primary_address(self) -> Optional[ShopifyAddress]:
        return self.addresses[0] if self.addresses else None


class ShopifyOrderWebhook(BaseModel):
    """orders/create payload"""
    id: str
    order_number: str
    customer: ShopifyCustomerRef
    currency: Optional[str] = None
    total_price: Decimal
    created_at: datetime
    billing_address: Optional[ShopifyAddress] = None

    @field_validator("id", "order_number", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _id_to_str(v)

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, v: datetime) -> datetime:
        return _naive_utc(v)

    @field_validator("total_price")
    @classmethod
    def non_negative_total(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("total_price must not be negative")
        return v


class ShopifyOrderUpdatedWebhook(BaseModel):
    """orders/updated payload, only the fields the cancellation flow needs"""
    id: str
    order_number: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    financial_status: Optional[str] = None

    @field_validator("id", "order_number", mode="before")
    @classmethod
    def coerce_ids(cls, v: Any) -> Any:
        return _id_to_str(v)

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None
