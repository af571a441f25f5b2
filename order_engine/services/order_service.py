import logging
import math
import secrets
from decimal import Decimal
from typing import Any, List, Optional

from ..collaborators.base import CatalogReader, CustomerDirectory
from ..config import EngineConfig
from ..errors import NotFoundError, ValidationError, parse_request
from ..exporters.csv_exporter import CsvExporter
from ..models.order import (
    FulfillmentStatus,
    Order,
    OrderItem,
    OrderPage,
    OrderStats,
    Pagination,
    PaymentStatus,
    Section,
    SectionStats,
    ShippingAddress,
    StatsOverview,
)
from ..models.requests import CreateOrderRequest, OrderQuery, StatsQuery, UpdateOrderRequest
from ..store.sqlite_catalog import SQLiteCatalog
from ..store.sqlite_customers import SQLiteCustomerDirectory
from ..store.sqlite_store import SQLiteOrderStore, UnitOfWork, new_id, utcnow
from .customer_stats import CustomerStatsUpdater
from .discounts import DiscountProvider, NoDiscountProvider
from .inventory import InventoryReservation
from .line_items import LineItemResolver, ValidatedItem
from .order_numbers import OrderNumberAllocator, normalize_order_number, parse_order_number
from .pricing import PricingEngine, round2, validate_shipping_cost
from .state_machine import (
    validate_deletable,
    validate_fulfillment_transition,
    validate_payment_transition,
)

logger = logging.getLogger(__name__)


class OrderService:
    """
    Order creation and lifecycle.

    CRITICAL:
    - every price is resolved from the catalog, never from the request
    - stock is re-checked at decrement time inside the order's transaction
    - status changes read the stored status in the transaction that writes
    """

    def __init__(self, store: SQLiteOrderStore, catalog: CatalogReader, customers: CustomerDirectory,
                 config: Optional[EngineConfig] = None, discounts: Optional[DiscountProvider] = None):
        self.config = config or EngineConfig()
        self.store = store
        self.catalog = catalog
        self.customers = customers
        self.discounts = discounts or NoDiscountProvider()
        self.pricing = PricingEngine(self.config.tax_rate)
        self.line_items = LineItemResolver(
            catalog,
            max_items_per_order=self.config.max_items_per_order,
            max_item_quantity=self.config.max_item_quantity,
        )
        self.inventory = InventoryReservation(catalog)
        self.order_numbers = OrderNumberAllocator(store, seed=self.config.order_number_seed)
        self.customer_stats = CustomerStatsUpdater(customers)
        self.exporter = CsvExporter()

    @classmethod
    def from_config(cls, config: EngineConfig, discounts: Optional[DiscountProvider] = None) -> "OrderService":
        store = SQLiteOrderStore.from_config(config)
        return cls(store, SQLiteCatalog(store), SQLiteCustomerDirectory(store), config=config, discounts=discounts)

    # --- Creation ---

    def create_order(self, data: Any, created_by: Optional[str] = None) -> Order:
        request: CreateOrderRequest = parse_request(CreateOrderRequest, data)

        # Everything that can fail without side effects runs before the write lock is taken.
        with self.store.unit_of_work(write=False) as tx:
            validated = self.line_items.resolve_items(request.items, tx)
            customer = self.customers.find_by_email(request.customer.email, tx)

        customer_id = customer.id if customer else None
        subtotal = sum((item.line_total for item in validated), Decimal("0"))
        discount = self.discounts.resolve_discount(request.discount_code, subtotal, customer_id)
        shipping_cost = validate_shipping_cost(request.shipping_cost)
        pricing = self.pricing.compute_pricing(validated, discount, shipping_cost)

        with self.store.unit_of_work() as tx:
            order_number = self.order_numbers.next_order_number(tx)
            order = self._build_order(request, validated, pricing, order_number, customer_id, created_by)
            self.store.save_order(order, parse_order_number(order_number), tx)
            self.inventory.reserve(validated, tx)
            if customer_id:
                self.customer_stats.increment_stats(customer_id, pricing.total, order.order_date, tx)
            created = self.store.fetch_order(order.id, tx)

        logger.info(f"Order created: {created.order_number} ({created.id})")
        return created

    def _build_order(self, request: CreateOrderRequest, validated: List[ValidatedItem], pricing,
                     order_number: str, customer_id: Optional[str], created_by: Optional[str]) -> Order:
        now = utcnow()
        address = None
        if request.shipping_address:
            address = ShippingAddress(
                **request.shipping_address.model_dump(exclude={"country"}),
                country=request.shipping_address.country or self.config.default_country,
            )
        return Order(
            id=new_id(),
            order_number=order_number,
            customer_id=customer_id,
            customer_name=request.customer.name,
            customer_email=request.customer.email,
            customer_phone=request.customer.phone,
            guest_order=customer_id is None,
            guest_token=None if customer_id else f"guest-{secrets.token_urlsafe(16)}",
            # mixed carts are tagged with the requested section or the first item's
            section=request.section or validated[0].section,
            payment_status=request.payment_status or PaymentStatus.PENDING,
            fulfillment_status=request.fulfillment_status or FulfillmentStatus.UNFULFILLED,
            subtotal=pricing.subtotal,
            discount=pricing.discount,
            tax=pricing.tax,
            shipping_cost=pricing.shipping_cost,
            total=pricing.total,
            currency=self.config.currency,
            payment_method=request.payment_method,
            notes=request.notes,
            tags=request.tags,
            order_date=now,
            created_at=now,
            updated_at=now,
            created_by=created_by,
            items=[
                OrderItem(
                    id=new_id(),
                    product_id=item.product_id,
                    product_name=item.name,
                    sku=item.sku,
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_total=round2(item.line_total),
                )
                for item in validated
            ],
            shipping_address=address,
        )

    # --- Reads ---

    def get_order(self, order_id: str) -> Order:
        with self.store.unit_of_work(write=False) as tx:
            order = self.store.fetch_order(order_id, tx)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def get_order_by_number(self, order_number: str) -> Order:
        number = normalize_order_number(order_number)
        with self.store.unit_of_work(write=False) as tx:
            order = self.store.fetch_order_by_number(number, tx)
        if order is None:
            raise NotFoundError("Order", number)
        return order

    def list_orders(self, query: Any = None) -> OrderPage:
        query: OrderQuery = parse_request(OrderQuery, query or {})
        limit = min(query.limit or self.config.default_limit, self.config.max_limit)
        return self._page(query, limit)

    def _page(self, query: OrderQuery, limit: int) -> OrderPage:
        offset = (query.page - 1) * limit
        with self.store.unit_of_work(write=False) as tx:
            orders, total_orders = self.store.search_orders(query, limit, offset, tx)
        total_pages = math.ceil(total_orders / limit)
        return OrderPage(
            orders=orders,
            pagination=Pagination(
                page=query.page,
                limit=limit,
                total_pages=total_pages,
                total_orders=total_orders,
                has_next=query.page < total_pages,
                has_previous=query.page > 1,
            ),
        )

    # --- Updates ---

    def update_order(self, order_id: str, data: Any) -> Order:
        """Changes statuses (through the state machines), notes, tags and payment method. Nothing else."""
        request: UpdateOrderRequest = parse_request(UpdateOrderRequest, data)
        provided = request.model_fields_set

        with self.store.unit_of_work() as tx:
            order = self._require_order(order_id, tx)
            changes = {}
            if request.payment_status is not None:
                validate_payment_transition(order.payment_status, request.payment_status)
                changes["payment_status"] = request.payment_status
            if request.fulfillment_status is not None:
                validate_fulfillment_transition(order.fulfillment_status, request.fulfillment_status)
                changes["fulfillment_status"] = request.fulfillment_status
            for name in ("notes", "tags", "payment_method"):
                if name in provided:
                    changes[name] = getattr(request, name)
            if changes:
                self.store.update_order_fields(order_id, changes, tx)
            updated = self.store.fetch_order(order_id, tx)

        logger.info(f"Order updated: {updated.order_number}")
        return updated

    def update_payment_status(self, order_id: str, status) -> Order:
        target = _coerce_status(PaymentStatus, status)
        with self.store.unit_of_work() as tx:
            order = self._require_order(order_id, tx)
            validate_payment_transition(order.payment_status, target)
            self.store.update_order_fields(order_id, {"payment_status": target}, tx)
            updated = self.store.fetch_order(order_id, tx)
        logger.info(f"Payment status updated for {updated.order_number}: {target.value}")
        return updated

    def update_fulfillment_status(self, order_id: str, status) -> Order:
        target = _coerce_status(FulfillmentStatus, status)
        with self.store.unit_of_work() as tx:
            order = self._require_order(order_id, tx)
            validate_fulfillment_transition(order.fulfillment_status, target)
            self.store.update_order_fields(order_id, {"fulfillment_status": target}, tx)
            updated = self.store.fetch_order(order_id, tx)
        logger.info(f"Fulfillment status updated for {updated.order_number}: {target.value}")
        return updated

    # --- Deletion ---

    def delete_order(self, order_id: str, hard: bool = False):
        """
        Soft delete by default. `hard` removes the order, its items and address
        for good; it is a privileged operation and callers must be authorized
        before passing it. Nothing here checks who is asking.
        """
        with self.store.unit_of_work() as tx:
            # a soft-deleted order can still be purged
            order = self.store.fetch_order(order_id, tx, include_deleted=hard)
            if order is None:
                raise NotFoundError("Order", order_id)
            validate_deletable(order)
            if hard:
                self.store.hard_delete(order_id, tx)
            else:
                self.store.soft_delete(order_id, tx)

        if hard:
            logger.warning(f"Order hard deleted: {order.order_number}")
        else:
            logger.info(f"Order soft deleted: {order.order_number}")

    # --- Duplication ---

    def duplicate_order(self, order_id: str, created_by: Optional[str] = None) -> Order:
        """
        Places a new order for the same customer, items and address.
        Prices and stock are resolved again from the catalog as it is now.
        """
        original = self.get_order(order_id)
        request = {
            "customer": {
                "name": original.customer_name,
                "email": original.customer_email,
                "phone": original.customer_phone,
            },
            "section": original.section,
            "items": [
                {"product_id": item.product_id, "variant_id": item.variant_id, "quantity": item.quantity}
                for item in original.items
            ],
            "shipping_cost": original.shipping_cost,
            "shipping_address": original.shipping_address.model_dump() if original.shipping_address else None,
            "notes": f"Duplicate of {original.order_number}",
            "tags": original.tags,
            "payment_method": original.payment_method,
        }
        duplicate = self.create_order(request, created_by=created_by)
        logger.info(f"Order duplicated: {original.order_number} -> {duplicate.order_number}")
        return duplicate

    # --- Reporting ---

    def get_order_stats(self, query: Any = None) -> OrderStats:
        query: StatsQuery = parse_request(StatsQuery, query or {})
        with self.store.unit_of_work(write=False) as tx:
            rows = self.store.stats_rows(query, tx)

        payment = {status: 0 for status in PaymentStatus}
        fulfillment = {status: 0 for status in FulfillmentStatus}
        by_section = {section: SectionStats() for section in Section}
        revenue = Decimal("0")

        for row in rows:
            total = Decimal(row["total"])
            revenue += total
            payment[PaymentStatus(row["payment_status"])] += 1
            fulfillment[FulfillmentStatus(row["fulfillment_status"])] += 1
            section = by_section[Section(row["section"])]
            section.orders += 1
            section.revenue += total

        total_orders = len(rows)
        return OrderStats(
            overview=StatsOverview(
                total_orders=total_orders,
                total_revenue=round2(revenue),
                average_order_value=round2(revenue / total_orders) if total_orders else Decimal("0.00"),
            ),
            payment_status=payment,
            fulfillment_status=fulfillment,
            by_section=by_section,
        )

    def export_orders_csv(self, query: Any = None) -> str:
        query: OrderQuery = parse_request(OrderQuery, query or {})
        query = query.model_copy(update={"page": 1})
        page = self._page(query, self.config.export_limit)
        return self.exporter.export(page.orders)

    # --- Helpers ---

    def _require_order(self, order_id: str, tx: UnitOfWork) -> Order:
        order = self.store.fetch_order(order_id, tx)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order


def _coerce_status(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().upper())
    except ValueError as exc:
        allowed = ", ".join(s.value for s in enum_cls)
        raise ValidationError(
            f"Invalid {enum_cls.__name__}: {value!r}. Must be one of: {allowed}",
            details={"value": str(value)},
        ) from exc
