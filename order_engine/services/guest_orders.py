import logging
from typing import Any, Dict, Optional

from ..errors import NotFoundError, ValidationError
from ..models.requests import normalize_email
from ..store.sqlite_customers import SQLiteCustomerDirectory
from ..store.sqlite_store import SQLiteOrderStore
from .customer_stats import CustomerStatsUpdater
from .order_numbers import normalize_order_number

logger = logging.getLogger(__name__)


class GuestOrderService:
    """Order tracking for customers without an account, and adoption of their orders on sign-up."""

    def __init__(self, store: SQLiteOrderStore, customers: SQLiteCustomerDirectory):
        self.store = store
        self.customers = customers
        self.customer_stats = CustomerStatsUpdater(customers)

    def lookup_guest_order(self, email: str, order_number: str) -> Optional[Dict[str, Any]]:
        """
        Finds an order by the e-mail it was placed with and its number.
        Both must match; returns None otherwise.
        """
        with self.store.unit_of_work(write=False) as tx:
            order = self.store.fetch_order_by_number(
                normalize_order_number(order_number), tx, email=_clean_email(email)
            )
        if order is None:
            return None

        return {
            "order": {
                "order_number": order.order_number,
                "date": order.order_date,
                "total": order.total,
                "currency": order.currency,
                "payment_status": order.payment_status,
                "fulfillment_status": order.fulfillment_status,
                "items": [
                    {
                        "product_name": item.product_name,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                        "line_total": item.line_total,
                    }
                    for item in order.items
                ],
                "shipping_address": order.shipping_address.model_dump() if order.shipping_address else None,
            },
            "has_account": order.customer_id is not None,
        }

    def link_guest_orders(self, customer_id: str, email: str) -> int:
        """
        Attaches every guest order placed with `email` to the customer and
        rebuilds the customer's statistics from their full order history.
        """
        email = _clean_email(email)
        with self.store.unit_of_work() as tx:
            if self.customers.get_customer(customer_id, tx) is None:
                raise NotFoundError("Customer", customer_id)

            linked = self.store.link_guest_orders(customer_id, email, tx)
            if linked == 0:
                logger.info(f"No guest orders found for email: {email}")
                return 0

            history = self.store.customer_order_history(customer_id, tx)
            self.customer_stats.recompute_stats(customer_id, history, tx)
            self.customers.mark_created_from_guest(customer_id, tx)

        logger.info(f"Linked {linked} guest orders to customer {customer_id}")
        return linked

    def guest_order_count(self, email: str) -> int:
        """Guest orders still unclaimed for `email`; checkout uses it to suggest signing up."""
        with self.store.unit_of_work(write=False) as tx:
            return self.store.count_guest_orders(_clean_email(email), tx)

    def has_guest_orders(self, email: str) -> bool:
        return self.guest_order_count(email) > 0


def _clean_email(email: str) -> str:
    try:
        return normalize_email(email or "")
    except ValueError as exc:
        raise ValidationError(str(exc), details={"email": email}) from exc
