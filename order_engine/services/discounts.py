import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

logger = logging.getLogger(__name__)


class DiscountProvider(ABC):
    """Resolves a discount code into an amount off the subtotal."""

    @abstractmethod
    def resolve_discount(self, code: Optional[str], subtotal: Decimal, customer_id: Optional[str] = None) -> Decimal:
        pass


class NoDiscountProvider(DiscountProvider):
    """Default provider until discount codes are backed by a real service: always zero."""

    def resolve_discount(self, code: Optional[str], subtotal: Decimal, customer_id: Optional[str] = None) -> Decimal:
        if code:
            logger.warning(f"Discount code {code!r} provided but discount service not yet implemented")
        return Decimal("0")
