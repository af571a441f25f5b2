import logging
from typing import List

from ..collaborators.base import CatalogReader
from ..errors import ValidationError
from .line_items import ValidatedItem

logger = logging.getLogger(__name__)


class InventoryReservation:
    """
    Decrements stock for each line inside the order's write transaction.

    The catalog is read again under the write lock first: a product that was
    removed or repriced after the items were resolved fails the order instead
    of being sold at a price that no longer holds.
    """

    def __init__(self, catalog: CatalogReader):
        self.catalog = catalog

    def reserve(self, items: List[ValidatedItem], tx):
        for item in items:
            self._recheck(item, tx)
            # Conditional decrement: a checkout that committed after our stock
            # check shows up here as a refused update, not as negative stock.
            if not self.catalog.decrement_stock(item.product_id, item.quantity, tx):
                product = self.catalog.get_product(item.product_id, tx)
                available = product.stock_quantity if product else 0
                raise ValidationError(
                    f'Insufficient stock for "{item.name}". Only {available} unit(s) available.',
                    details={
                        "product_id": item.product_id,
                        "requested": item.quantity,
                        "available": available,
                        "shortfall": item.quantity - available,
                    },
                )
            logger.info(f"Reserved {item.quantity} unit(s) of product {item.product_id}")

    def _recheck(self, item: ValidatedItem, tx):
        product = self.catalog.get_product(item.product_id, tx)
        if product is None or product.deleted_at is not None:
            raise ValidationError(
                f"Product is no longer available: {item.name}",
                details={"product_id": item.product_id},
            )

        current_price = product.price
        if item.variant_id:
            variant = self.catalog.get_variant(item.variant_id, tx)
            if variant is None:
                raise ValidationError(
                    f'Invalid variant for "{item.name}"',
                    details={"product_id": item.product_id, "variant_id": item.variant_id},
                )
            if variant.price is not None:
                current_price = variant.price

        if current_price != item.unit_price:
            logger.warning(f"Price of product {item.product_id} changed during checkout")
            raise ValidationError(
                f'Price of "{item.name}" changed to {current_price}. Please review your order.',
                details={
                    "product_id": item.product_id,
                    "quoted_price": item.unit_price,
                    "current_price": current_price,
                },
            )
