import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from ..collaborators.base import CustomerDirectory
from ..models.catalog import CustomerStats
from .pricing import round2

logger = logging.getLogger(__name__)


class CustomerStatsUpdater:
    """
    Maintains a customer's order count, lifetime spend, average order value
    and last order date.

    Reads and writes happen in the caller's write unit of work, which holds
    the database write lock, so two orders for the same customer cannot
    interleave their read-increment-write.
    """

    def __init__(self, customers: CustomerDirectory):
        self.customers = customers

    def increment_stats(self, customer_id: str, order_total: Decimal, order_date: datetime, tx) -> Optional[CustomerStats]:
        customer = self.customers.get_customer(customer_id, tx)
        if customer is None:
            logger.warning(f"Customer {customer_id} not found for stats update")
            return None

        total_orders = customer.stats.total_orders + 1
        total_spent = customer.stats.total_spent + order_total
        stats = CustomerStats(
            total_orders=total_orders,
            total_spent=total_spent,
            average_order_value=round2(total_spent / total_orders),
            last_order_date=order_date,
        )
        self.customers.write_stats(customer_id, stats, tx)
        logger.info(f"Updated stats for customer {customer_id}")
        return stats

    def recompute_stats(self, customer_id: str, history: List[Tuple[Decimal, datetime]], tx) -> CustomerStats:
        """Rebuilds stats from (total, order_date) pairs, newest first."""
        total_orders = len(history)
        total_spent = sum((total for total, _ in history), Decimal("0"))
        stats = CustomerStats(
            total_orders=total_orders,
            total_spent=total_spent,
            average_order_value=round2(total_spent / total_orders) if total_orders else Decimal("0"),
            last_order_date=history[0][1] if history else None,
        )
        self.customers.write_stats(customer_id, stats, tx)
        return stats
