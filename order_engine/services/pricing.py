from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from ..errors import ValidationError
from ..models.order import PricingBreakdown

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 0.18 stays 0.18 instead of its binary expansion
    return Decimal(str(value))


def round2(value) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def validate_shipping_cost(shipping_cost) -> Decimal:
    """
    Accepts the provided shipping cost as-is.
    A rate table lookup would plug in here.
    """
    cost = to_decimal(shipping_cost or 0)
    if cost < ZERO:
        raise ValidationError("Shipping cost cannot be negative", details={"shipping_cost": str(cost)})
    return cost


class PricingEngine:
    """
    Pure money arithmetic for an order.

    Tax applies to the discounted subtotal, never to shipping. Every field
    is rounded half-up to two places exactly once.
    """

    def __init__(self, tax_rate=Decimal("0.18")):
        self.tax_rate = to_decimal(tax_rate)

    def compute_tax(self, subtotal, discount=ZERO) -> Decimal:
        return round2((to_decimal(subtotal) - to_decimal(discount)) * self.tax_rate)

    def compute_pricing(self, items: Iterable, discount=ZERO, shipping_cost=ZERO) -> PricingBreakdown:
        """`items` need `unit_price` and `quantity`; everything else is ignored."""
        discount = to_decimal(discount)
        shipping_cost = to_decimal(shipping_cost)

        subtotal = ZERO
        for item in items:
            unit_price = to_decimal(item.unit_price)
            if unit_price < ZERO or item.quantity < 0:
                raise ValidationError("Line items cannot carry negative prices or quantities")
            subtotal += unit_price * item.quantity

        if discount < ZERO:
            raise ValidationError("Discount cannot be negative", details={"discount": str(discount)})
        if shipping_cost < ZERO:
            raise ValidationError("Shipping cost cannot be negative", details={"shipping_cost": str(shipping_cost)})
        if discount > subtotal:
            raise ValidationError(
                "Discount cannot exceed the order subtotal",
                details={"discount": str(discount), "subtotal": str(subtotal)},
            )

        tax = self.compute_tax(subtotal, discount)
        return PricingBreakdown(
            subtotal=round2(subtotal),
            discount=round2(discount),
            tax=tax,
            shipping_cost=round2(shipping_cost),
            total=round2(subtotal - discount + tax + shipping_cost),
        )
