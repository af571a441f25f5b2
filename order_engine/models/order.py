from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Section(str, Enum):
    CAFE = "CAFE"
    FLOWERS = "FLOWERS"
    BOOKS = "BOOKS"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class FulfillmentStatus(str, Enum):
    UNFULFILLED = "UNFULFILLED"
    FULFILLED = "FULFILLED"
    PARTIAL = "PARTIAL"
    SCHEDULED = "SCHEDULED"


class PricingBreakdown(BaseModel):
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping_cost: Decimal
    total: Decimal


class OrderItem(BaseModel):
    """A priced line of an order. Name and SKU are snapshots taken at order time."""
    id: str
    product_id: str
    product_name: str
    sku: str
    variant_id: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class ShippingAddress(BaseModel):
    full_name: str
    phone: str
    email: Optional[str] = None
    address: str
    city: str
    state: str
    postal_code: str
    country: str


class Order(BaseModel):
    id: str
    order_number: str
    customer_id: Optional[str] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    guest_order: bool = False
    guest_token: Optional[str] = None
    section: Section
    payment_status: PaymentStatus = PaymentStatus.PENDING
    fulfillment_status: FulfillmentStatus = FulfillmentStatus.UNFULFILLED
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping_cost: Decimal
    total: Decimal
    currency: str
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    order_date: datetime
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    shipping_address: Optional[ShippingAddress] = None

    @property
    def items_count(self) -> int:
        return len(self.items)


class Pagination(BaseModel):
    page: int
    limit: int
    total_pages: int
    total_orders: int
    has_next: bool
    has_previous: bool


class OrderPage(BaseModel):
    orders: List[Order]
    pagination: Pagination


class StatsOverview(BaseModel):
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal


class SectionStats(BaseModel):
    orders: int = 0
    revenue: Decimal = Decimal("0")


class OrderStats(BaseModel):
    overview: StatsOverview
    payment_status: Dict[PaymentStatus, int]
    fulfillment_status: Dict[FulfillmentStatus, int]
    by_section: Dict[Section, SectionStats]
