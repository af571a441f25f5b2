"""
Inbound request shapes.

Create requests silently drop unknown keys, so a client-supplied `price`,
`total` or `subtotal` never makes it past parsing. Update requests forbid
unknown keys: monetary fields are not mutable after creation.
"""
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .order import FulfillmentStatus, PaymentStatus, Section

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_PATTERN = r"^[\d\s\-\+\(\)]+$"
POSTAL_CODE_PATTERN = r"^[\d\s\-A-Za-z]+$"


def normalize_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Valid email address is required")
    return value


def _clean_tags(tags: List[str]) -> List[str]:
    cleaned = [tag.strip() for tag in tags]
    for tag in cleaned:
        if not 1 <= len(tag) <= 50:
            raise ValueError("Each tag must be between 1 and 50 characters")
    return cleaned


def _as_utc(value: datetime) -> datetime:
    # naive datetimes from query strings are taken as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


Email = Annotated[str, AfterValidator(normalize_email)]
Tags = Annotated[List[str], AfterValidator(_clean_tags)]
UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class CustomerInfo(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=100)
    email: Email
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)


class OrderItemRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    product_id: str = Field(min_length=1)
    variant_id: Optional[str] = None
    quantity: int


class ShippingAddressRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=2, max_length=100)
    phone: str = Field(pattern=PHONE_PATTERN)
    email: Optional[Email] = None
    address: str = Field(min_length=5, max_length=200)
    city: str = Field(min_length=2, max_length=100)
    state: str = Field(min_length=2, max_length=100)
    postal_code: str = Field(min_length=3, max_length=20, pattern=POSTAL_CODE_PATTERN)
    country: Optional[str] = Field(default=None, min_length=2, max_length=100)


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    customer: CustomerInfo
    section: Optional[Section] = None
    items: List[OrderItemRequest]
    discount_code: Optional[str] = Field(default=None, min_length=3, max_length=50)
    shipping_cost: Decimal = Decimal("0")
    shipping_address: Optional[ShippingAddressRequest] = None
    payment_status: Optional[PaymentStatus] = None
    fulfillment_status: Optional[FulfillmentStatus] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    tags: Tags = Field(default_factory=list)
    payment_method: Optional[str] = Field(default=None, min_length=2, max_length=50)


class UpdateOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    payment_status: Optional[PaymentStatus] = None
    fulfillment_status: Optional[FulfillmentStatus] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    tags: Optional[Tags] = None
    payment_method: Optional[str] = Field(default=None, min_length=2, max_length=50)


SortField = Literal["order_date", "total", "order_number", "created_at"]


class OrderQuery(BaseModel):
    # query strings arrive camelCased (paymentStatus, sortBy); callers in Python use field names
    model_config = ConfigDict(str_strip_whitespace=True, alias_generator=to_camel, populate_by_name=True)

    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)
    search: Optional[str] = None
    section: Optional[Section] = None
    payment_status: Optional[PaymentStatus] = None
    fulfillment_status: Optional[FulfillmentStatus] = None
    customer_id: Optional[str] = None
    sort_by: SortField = "order_date"
    sort_order: Literal["asc", "desc"] = "desc"
    date_from: Optional[UtcDatetime] = None
    date_to: Optional[UtcDatetime] = None


class StatsQuery(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date_from: Optional[UtcDatetime] = None
    date_to: Optional[UtcDatetime] = None
    section: Optional[Section] = None
