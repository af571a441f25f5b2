from decimal import Decimal
from types import SimpleNamespace

import pytest

from order_engine.errors import ValidationError
from order_engine.services.pricing import PricingEngine, round2, validate_shipping_cost


def line(price, quantity):
    return SimpleNamespace(unit_price=Decimal(price), quantity=quantity)


# ============================================================================
# PricingEngine
# ============================================================================


class TestComputePricing:

    def test_worked_example(self):
        pricing = PricingEngine(0.18).compute_pricing([line("100", 2)], shipping_cost=Decimal("50"))
        assert pricing.subtotal == Decimal("200.00")
        assert pricing.discount == Decimal("0.00")
        assert pricing.tax == Decimal("36.00")
        assert pricing.shipping_cost == Decimal("50.00")
        assert pricing.total == Decimal("286.00")

    def test_tax_applies_to_discounted_subtotal_only(self):
        pricing = PricingEngine(0.18).compute_pricing(
            [line("100", 1)], discount=Decimal("50"), shipping_cost=Decimal("10")
        )
        assert pricing.tax == Decimal("9.00")
        assert pricing.total == Decimal("69.00")

    def test_total_identity(self):
        pricing = PricingEngine(0.18).compute_pricing(
            [line("19.99", 3), line("4.35", 7)], discount=Decimal("5.5"), shipping_cost=Decimal("12.25")
        )
        assert pricing.total == round2(pricing.subtotal - pricing.discount + pricing.tax + pricing.shipping_cost)

    def test_half_up_rounding(self):
        # 0.25 * 0.18 = 0.045 -> 0.05
        assert PricingEngine(0.18).compute_tax(Decimal("0.25")) == Decimal("0.05")

    def test_discount_equal_to_subtotal_is_allowed(self):
        pricing = PricingEngine(0.18).compute_pricing([line("40", 1)], discount=Decimal("40"))
        assert pricing.tax == Decimal("0.00")
        assert pricing.total == Decimal("0.00")

    def test_discount_above_subtotal_rejected(self):
        with pytest.raises(ValidationError):
            PricingEngine(0.18).compute_pricing([line("40", 1)], discount=Decimal("40.01"))

    def test_negative_discount_rejected(self):
        with pytest.raises(ValidationError):
            PricingEngine(0.18).compute_pricing([line("40", 1)], discount=Decimal("-1"))

    def test_negative_shipping_rejected(self):
        with pytest.raises(ValidationError):
            PricingEngine(0.18).compute_pricing([line("40", 1)], shipping_cost=Decimal("-0.01"))

    def test_negative_line_rejected(self):
        with pytest.raises(ValidationError):
            PricingEngine(0.18).compute_pricing([line("-5", 1)])

    def test_float_tax_rate_does_not_leak_binary_error(self):
        assert PricingEngine(0.18).tax_rate == Decimal("0.18")


class TestShippingCost:

    def test_passes_through(self):
        assert validate_shipping_cost(Decimal("150")) == Decimal("150")

    def test_none_is_zero(self):
        assert validate_shipping_cost(None) == Decimal("0")

    def test_negative_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_shipping_cost(Decimal("-1"))
        assert exc_info.value.status_code == 400
