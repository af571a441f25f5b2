"""
Records owned by the catalog and customer collaborators.

Each catalog section carries its own detail shape; a product's display
name is read from whichever variant it holds.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from .order import Section


class CafeDetails(BaseModel):
    kind: Literal["CAFE"] = "CAFE"
    name: str


class FlowersDetails(BaseModel):
    kind: Literal["FLOWERS"] = "FLOWERS"
    name: str


class BooksDetails(BaseModel):
    kind: Literal["BOOKS"] = "BOOKS"
    title: str
    author: Optional[str] = None


ProductDetails = Annotated[Union[CafeDetails, FlowersDetails, BooksDetails], Field(discriminator="kind")]


class ProductRecord(BaseModel):
    id: str
    sku: str
    price: Decimal
    stock_quantity: int
    section: Section
    details: ProductDetails
    deleted_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        if isinstance(self.details, BooksDetails):
            return self.details.title
        return self.details.name


class ProductVariant(BaseModel):
    id: str
    product_id: str
    sku: Optional[str] = None
    price: Optional[Decimal] = None


class CustomerStats(BaseModel):
    total_orders: int = 0
    total_spent: Decimal = Decimal("0")
    average_order_value: Decimal = Decimal("0")
    last_order_date: Optional[datetime] = None


class CustomerRecord(BaseModel):
    id: str
    email: str
    name: str
    phone: Optional[str] = None
    stats: CustomerStats = Field(default_factory=CustomerStats)
    created_from_guest: bool = False


def details_for(section: Section, name: str, author: Optional[str] = None):
    """Builds the detail variant matching `section`."""
    if section == Section.BOOKS:
        return BooksDetails(title=name, author=author)
    if section == Section.FLOWERS:
        return FlowersDetails(name=name)
    return CafeDetails(name=name)
