import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..collaborators.base import CatalogReader
from ..errors import NotFoundError, ValidationError
from ..models.order import Section
from ..models.requests import OrderItemRequest

logger = logging.getLogger(__name__)


class ValidatedItem(BaseModel):
    product_id: str
    name: str
    sku: str
    variant_id: Optional[str] = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    section: Section


class LineItemResolver:
    """
    Turns requested {product_id, variant_id, quantity} lines into priced items.

    Prices always come from the catalog; whatever price a client sent was
    dropped when the request was parsed. Stock is checked but not touched.
    """

    def __init__(self, catalog: CatalogReader, max_items_per_order: int = 100, max_item_quantity: int = 1000):
        self.catalog = catalog
        self.max_items_per_order = max_items_per_order
        self.max_item_quantity = max_item_quantity

    def resolve_items(self, requested: List[OrderItemRequest], tx) -> List[ValidatedItem]:
        if not requested:
            raise ValidationError("At least one product is required")
        if len(requested) > self.max_items_per_order:
            raise ValidationError(
                f"Maximum {self.max_items_per_order} items allowed per order",
                details={"items": len(requested), "max_items": self.max_items_per_order},
            )

        claimed: Dict[str, int] = defaultdict(int)
        validated = []
        for item in requested:
            product = self.catalog.get_product(item.product_id, tx)
            if product is None:
                raise NotFoundError("Product", item.product_id)

            name = product.display_name
            if product.deleted_at is not None:
                raise ValidationError(
                    f"Product is no longer available: {name}",
                    details={"product_id": product.id},
                )

            if item.quantity <= 0 or item.quantity > self.max_item_quantity:
                raise ValidationError(
                    f'Quantity for "{name}" must be between 1 and {self.max_item_quantity}',
                    details={"product_id": product.id, "quantity": item.quantity},
                )

            # the same product may appear on several lines
            claimed[product.id] += item.quantity
            if product.stock_quantity < claimed[product.id]:
                raise ValidationError(
                    f'Insufficient stock for "{name}". Only {product.stock_quantity} unit(s) available.',
                    details={
                        "product_id": product.id,
                        "requested": claimed[product.id],
                        "available": product.stock_quantity,
                        "shortfall": claimed[product.id] - product.stock_quantity,
                    },
                )

            unit_price = product.price
            sku = product.sku
            if item.variant_id:
                variant = self.catalog.get_variant(item.variant_id, tx)
                if variant is None or variant.product_id != product.id:
                    raise ValidationError(
                        f'Invalid variant for "{name}"',
                        details={"product_id": product.id, "variant_id": item.variant_id},
                    )
                if variant.price is not None:
                    unit_price = variant.price
                if variant.sku:
                    sku = variant.sku

            validated.append(ValidatedItem(
                product_id=product.id,
                name=name,
                sku=sku,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price=unit_price,
                line_total=unit_price * item.quantity,
                section=product.section,
            ))

        logger.debug(f"Resolved {len(validated)} line item(s)")
        return validated
