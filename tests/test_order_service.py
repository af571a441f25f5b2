import itertools
from decimal import Decimal

import pytest
from conftest import ADDRESS, order_request

from order_engine.config import EngineConfig
from order_engine.errors import NotFoundError, ValidationError
from order_engine.models.order import FulfillmentStatus, PaymentStatus, Section
from order_engine.services.discounts import DiscountProvider
from order_engine.services.order_service import OrderService
from order_engine.services.state_machine import FULFILLMENT_TRANSITIONS, PAYMENT_TRANSITIONS, can_transition


def stock_of(catalog, product):
    return catalog.get_product(product.id).stock_quantity


def order_count(store):
    with store.unit_of_work(write=False) as tx:
        return tx.execute("SELECT COUNT(*) FROM orders").fetchone()[0]


# ============================================================================
# Creation
# ============================================================================


class TestCreateOrder:

    def test_worked_example(self, service, products):
        order = service.create_order(order_request((products["latte"], 2), shipping_cost="50"))
        assert order.subtotal == Decimal("200.00")
        assert order.tax == Decimal("36.00")
        assert order.shipping_cost == Decimal("50")
        assert order.total == Decimal("286.00")
        assert order.order_number == "#1001"
        assert order.currency == "PKR"
        assert order.payment_status == PaymentStatus.PENDING
        assert order.fulfillment_status == FulfillmentStatus.UNFULFILLED

    def test_client_prices_are_ignored(self, service, products):
        request = order_request((products["latte"], 1), total="1", subtotal="1")
        request["items"][0]["price"] = "0.01"
        request["items"][0]["unit_price"] = "0.01"
        order = service.create_order(request)
        assert order.items[0].unit_price == Decimal("100.00")
        assert order.total == Decimal("118.00")

    def test_items_snapshot_name_and_sku(self, service, products):
        order = service.create_order(order_request((products["novel"], 1), (products["latte"], 3)))
        assert [item.product_name for item in order.items] == ["Dune", "Latte"]
        assert [item.sku for item in order.items] == ["BK-001", "CAFE-LATTE"]
        assert order.items[1].line_total == Decimal("300.00")
        assert order.items_count == 2

    def test_section_defaults_to_first_item(self, service, products):
        order = service.create_order(order_request((products["roses"], 1), (products["latte"], 1)))
        assert order.section == Section.FLOWERS

    def test_requested_section_wins(self, service, products):
        order = service.create_order(order_request((products["roses"], 1), section="CAFE"))
        assert order.section == Section.CAFE

    def test_decrements_stock(self, service, catalog, products):
        service.create_order(order_request((products["roses"], 2)))
        assert stock_of(catalog, products["roses"]) == 3

    def test_numbers_increase(self, service, products):
        first = service.create_order(order_request((products["latte"], 1)))
        second = service.create_order(order_request((products["latte"], 1)))
        assert (first.order_number, second.order_number) == ("#1001", "#1002")

    def test_shipping_address_gets_default_country(self, service, products):
        order = service.create_order(order_request((products["latte"], 1), shipping_address=ADDRESS))
        assert order.shipping_address.city == "Islamabad"
        assert order.shipping_address.country == "Pakistan"

    def test_created_by_is_recorded(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)), created_by="admin-1")
        assert order.created_by == "admin-1"

    def test_tags_and_notes(self, service, products):
        order = service.create_order(order_request((products["latte"], 1), tags=[" gift ", "vip"], notes="Ring twice"))
        assert order.tags == ["gift", "vip"]
        assert order.notes == "Ring twice"


class TestCustomerLinkage:

    def test_guest_order(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        assert order.guest_order is True
        assert order.customer_id is None
        assert order.guest_token.startswith("guest-")

    def test_known_email_links_customer(self, service, products, customer):
        order = service.create_order(order_request((products["latte"], 1), email="AYESHA@example.com"))
        assert order.customer_id == customer.id
        assert order.guest_order is False
        assert order.guest_token is None
        assert order.customer_email == "ayesha@example.com"

    def test_customer_stats_incremented(self, service, customers, products, customer):
        service.create_order(order_request((products["latte"], 1), email=customer.email))
        second = service.create_order(order_request((products["latte"], 2), email=customer.email))
        stats = customers.get_customer(customer.id).stats
        assert stats.total_orders == 2
        assert stats.total_spent == Decimal("354.00")
        assert stats.average_order_value == Decimal("177.00")
        assert stats.last_order_date == second.order_date


class TestCreateRejections:

    def test_invalid_email(self, service, products):
        with pytest.raises(ValidationError) as exc_info:
            service.create_order(order_request((products["latte"], 1), email="not-an-email"))
        assert exc_info.value.details["errors"]

    def test_missing_customer(self, service, products):
        with pytest.raises(ValidationError):
            service.create_order({"items": [{"product_id": products["latte"].id, "quantity": 1}]})

    def test_negative_shipping(self, service, products):
        with pytest.raises(ValidationError):
            service.create_order(order_request((products["latte"], 1), shipping_cost="-5"))

    def test_insufficient_stock_leaves_nothing_behind(self, service, store, catalog, products):
        with pytest.raises(ValidationError):
            service.create_order(order_request((products["latte"], 1), (products["roses"], 6)))
        assert order_count(store) == 0
        assert stock_of(catalog, products["latte"]) == 50

    def test_late_stock_failure_rolls_back(self, service, store, catalog, products, monkeypatch):
        # stock disappears between resolution and reservation
        original = service.line_items.resolve_items

        def resolve_then_sell_out(requested, tx):
            items = original(requested, tx)
            catalog.set_stock(products["roses"].id, 0)
            return items

        monkeypatch.setattr(service.line_items, "resolve_items", resolve_then_sell_out)
        with pytest.raises(ValidationError) as exc_info:
            service.create_order(order_request((products["latte"], 2), (products["roses"], 1)))

        assert exc_info.value.details["available"] == 0
        assert order_count(store) == 0
        assert stock_of(catalog, products["latte"]) == 50

        monkeypatch.undo()
        catalog.set_stock(products["roses"].id, 5)
        order = service.create_order(order_request((products["roses"], 1)))
        assert order.order_number == "#1001"

    def _resolve_then(self, service, monkeypatch, change):
        original = service.line_items.resolve_items

        def resolve_then_change(requested, tx):
            items = original(requested, tx)
            change()
            return items

        monkeypatch.setattr(service.line_items, "resolve_items", resolve_then_change)

    def test_product_removed_after_resolution(self, service, store, catalog, products, monkeypatch):
        self._resolve_then(service, monkeypatch, lambda: catalog.soft_delete_product(products["roses"].id))
        with pytest.raises(ValidationError) as exc_info:
            service.create_order(order_request((products["latte"], 2), (products["roses"], 1)))

        assert "no longer available" in exc_info.value.message
        assert order_count(store) == 0
        assert stock_of(catalog, products["latte"]) == 50
        assert stock_of(catalog, products["roses"]) == 5

    def test_price_change_after_resolution(self, service, store, catalog, products, monkeypatch):
        self._resolve_then(service, monkeypatch, lambda: catalog.set_price(products["latte"].id, "150"))
        with pytest.raises(ValidationError) as exc_info:
            service.create_order(order_request((products["latte"], 2)))

        assert exc_info.value.details["quoted_price"] == Decimal("100.00")
        assert exc_info.value.details["current_price"] == Decimal("150")
        assert order_count(store) == 0
        assert stock_of(catalog, products["latte"]) == 50

        monkeypatch.undo()
        assert service.create_order(order_request((products["latte"], 2))).subtotal == Decimal("300.00")

    def test_variant_price_change_after_resolution(self, service, store, catalog, products, monkeypatch):
        variant = catalog.add_variant(products["latte"].id, sku="CAFE-LATTE-L", price="120")

        def reprice_variant():
            with store.unit_of_work() as tx:
                tx.execute("UPDATE product_variants SET price = ? WHERE id = ?", ("130", variant.id))

        self._resolve_then(service, monkeypatch, reprice_variant)
        request = order_request()
        request["items"] = [{"product_id": products["latte"].id, "variant_id": variant.id, "quantity": 1}]
        with pytest.raises(ValidationError) as exc_info:
            service.create_order(request)

        assert exc_info.value.details["current_price"] == Decimal("130")
        assert order_count(store) == 0


class TestDiscounts:

    def test_stub_discount_is_zero(self, service, products):
        order = service.create_order(order_request((products["latte"], 1), discount_code="SAVE10"))
        assert order.discount == Decimal("0.00")

    def test_custom_provider(self, config, products):
        class FlatTen(DiscountProvider):
            def resolve_discount(self, code, subtotal, customer_id=None):
                return Decimal("10") if code == "FLAT10" else Decimal("0")

        service = OrderService.from_config(config, discounts=FlatTen())
        order = service.create_order(order_request((products["latte"], 1), discount_code="FLAT10"))
        assert order.discount == Decimal("10.00")
        assert order.tax == Decimal("16.20")
        assert order.total == Decimal("106.20")


# ============================================================================
# Reads
# ============================================================================


class TestReads:

    def test_get_order(self, service, products):
        created = service.create_order(order_request((products["latte"], 1), shipping_address=ADDRESS))
        fetched = service.get_order(created.id)
        assert fetched == created

    def test_get_missing(self, service):
        with pytest.raises(NotFoundError) as exc_info:
            service.get_order("nope")
        assert exc_info.value.code == "ORDER_NOT_FOUND"

    @pytest.mark.parametrize("number", ["#1001", "1001", " 1001 "])
    def test_get_by_number(self, service, products, number):
        created = service.create_order(order_request((products["latte"], 1)))
        assert service.get_order_by_number(number).id == created.id


@pytest.fixture
def populated(service, products, customer):
    orders = [
        service.create_order(order_request((products["latte"], 1), name="Bilal Ahmed", email="bilal@example.com")),
        service.create_order(order_request((products["roses"], 2), email=customer.email, name=customer.name)),
        service.create_order(order_request((products["novel"], 1), name="Sara Ali", email="sara@example.com")),
    ]
    service.update_payment_status(orders[1].id, "PAID")
    return orders


class TestListOrders:

    def test_default_sort_is_newest_first(self, service, populated):
        page = service.list_orders()
        assert [o.order_number for o in page.orders] == ["#1003", "#1002", "#1001"]
        assert page.pagination.total_orders == 3
        assert page.pagination.limit == 20

    def test_search_by_name_email_and_number(self, service, populated):
        assert [o.order_number for o in service.list_orders({"search": "bilal"}).orders] == ["#1001"]
        assert [o.order_number for o in service.list_orders({"search": "SARA@"}).orders] == ["#1003"]
        assert [o.order_number for o in service.list_orders({"search": "#1002"}).orders] == ["#1002"]

    def test_search_wildcards_are_literal(self, service, populated):
        assert service.list_orders({"search": "%"}).pagination.total_orders == 0

    def test_filters(self, service, populated, customer):
        assert service.list_orders({"section": "BOOKS"}).orders[0].order_number == "#1003"
        assert service.list_orders({"payment_status": "PAID"}).orders[0].order_number == "#1002"
        assert service.list_orders({"customer_id": customer.id}).pagination.total_orders == 1

    def test_sort_by_total(self, service, populated):
        page = service.list_orders({"sort_by": "total", "sort_order": "asc"})
        totals = [o.total for o in page.orders]
        assert totals == sorted(totals)

    def test_pagination(self, service, populated):
        page = service.list_orders({"page": 2, "limit": 2})
        assert [o.order_number for o in page.orders] == ["#1001"]
        assert page.pagination.total_pages == 2
        assert page.pagination.has_previous is True
        assert page.pagination.has_next is False

    def test_limit_is_capped(self, service, populated):
        assert service.list_orders({"limit": 5000}).pagination.limit == 100

    def test_unknown_sort_rejected(self, service):
        with pytest.raises(ValidationError):
            service.list_orders({"sort_by": "customer_email; DROP TABLE orders"})

    def test_date_range(self, service, populated):
        created = populated[1].order_date
        page = service.list_orders({"date_from": created.isoformat(), "date_to": created.isoformat()})
        assert [o.order_number for o in page.orders] == ["#1002"]

    def test_camel_case_parameters(self, service, populated, customer):
        assert [o.order_number for o in service.list_orders({"paymentStatus": "PAID"}).orders] == ["#1002"]
        assert service.list_orders({"fulfillmentStatus": "FULFILLED"}).pagination.total_orders == 0
        assert service.list_orders({"customerId": customer.id}).pagination.total_orders == 1
        page = service.list_orders({"sortBy": "order_number", "sortOrder": "asc"})
        assert [o.order_number for o in page.orders] == ["#1001", "#1002", "#1003"]
        created = populated[1].order_date.isoformat()
        assert service.list_orders({"dateFrom": created, "dateTo": created}).orders[0].order_number == "#1002"


# ============================================================================
# Updates
# ============================================================================


class TestStatusUpdates:

    def test_payment_flow(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        assert service.update_payment_status(order.id, "paid").payment_status == PaymentStatus.PAID
        assert service.update_payment_status(order.id, PaymentStatus.REFUNDED).payment_status == PaymentStatus.REFUNDED

    def test_refunded_to_paid_leaves_order_unchanged(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        service.update_payment_status(order.id, "PAID")
        service.update_payment_status(order.id, "REFUNDED")
        with pytest.raises(ValidationError) as exc_info:
            service.update_payment_status(order.id, "PAID")
        assert exc_info.value.details["current"] == "REFUNDED"
        assert service.get_order(order.id).payment_status == PaymentStatus.REFUNDED

    def test_unknown_status(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        with pytest.raises(ValidationError):
            service.update_payment_status(order.id, "SHIPPED")

    def test_fulfillment_flow(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        service.update_fulfillment_status(order.id, "SCHEDULED")
        service.update_fulfillment_status(order.id, "PARTIAL")
        updated = service.update_fulfillment_status(order.id, "FULFILLED")
        assert updated.fulfillment_status == FulfillmentStatus.FULFILLED
        assert updated.updated_at >= order.updated_at

    def test_missing_order(self, service):
        with pytest.raises(NotFoundError):
            service.update_fulfillment_status("nope", "FULFILLED")


class TestEveryStoredTransition:

    @staticmethod
    def _order_in(service, store, products, field, status):
        order = service.create_order(order_request((products["latte"], 1)))
        with store.unit_of_work() as tx:
            store.update_order_fields(order.id, {field: status}, tx)
        return order

    @pytest.mark.parametrize("current,target", list(itertools.product(PaymentStatus, repeat=2)))
    def test_payment(self, service, store, products, current, target):
        order = self._order_in(service, store, products, "payment_status", current)

        allowed = can_transition(PAYMENT_TRANSITIONS, current, target)
        if allowed:
            assert service.update_payment_status(order.id, target).payment_status == target
        else:
            with pytest.raises(ValidationError) as exc_info:
                service.update_payment_status(order.id, target)
            assert exc_info.value.details["current"] == current.value
        assert service.get_order(order.id).payment_status == (target if allowed else current)

    @pytest.mark.parametrize("current,target", list(itertools.product(FulfillmentStatus, repeat=2)))
    def test_fulfillment(self, service, store, products, current, target):
        order = self._order_in(service, store, products, "fulfillment_status", current)

        allowed = can_transition(FULFILLMENT_TRANSITIONS, current, target)
        if allowed:
            assert service.update_fulfillment_status(order.id, target).fulfillment_status == target
        else:
            with pytest.raises(ValidationError) as exc_info:
                service.update_fulfillment_status(order.id, target)
            assert exc_info.value.details["current"] == current.value
        assert service.get_order(order.id).fulfillment_status == (target if allowed else current)


class TestUpdateOrder:

    def test_mutable_fields(self, service, products):
        order = service.create_order(order_request((products["latte"], 1), notes="old"))
        updated = service.update_order(order.id, {
            "notes": "new", "tags": ["rush"], "payment_method": "COD", "payment_status": "PAID",
        })
        assert updated.notes == "new"
        assert updated.tags == ["rush"]
        assert updated.payment_method == "COD"
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.total == order.total

    def test_clearing_notes(self, service, products):
        order = service.create_order(order_request((products["latte"], 1), notes="old"))
        assert service.update_order(order.id, {"notes": None}).notes is None

    @pytest.mark.parametrize("field", ["total", "subtotal", "tax", "items", "customer_email"])
    def test_other_fields_rejected(self, service, products, field):
        order = service.create_order(order_request((products["latte"], 1)))
        with pytest.raises(ValidationError):
            service.update_order(order.id, {field: "1"})
        assert service.get_order(order.id).total == order.total

    def test_illegal_transition_writes_nothing(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        with pytest.raises(ValidationError):
            service.update_order(order.id, {"notes": "changed", "payment_status": "REFUNDED"})
        assert service.get_order(order.id).notes is None


# ============================================================================
# Deletion
# ============================================================================


class TestDeleteOrder:

    def test_soft_delete_hides_order(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        service.delete_order(order.id)
        with pytest.raises(NotFoundError):
            service.get_order(order.id)
        assert service.list_orders().pagination.total_orders == 0

    def test_paid_order_cannot_be_deleted(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        service.update_payment_status(order.id, "PAID")
        with pytest.raises(ValidationError):
            service.delete_order(order.id)
        with pytest.raises(ValidationError):
            service.delete_order(order.id, hard=True)

    def test_fulfilled_order_cannot_be_deleted(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        service.update_fulfillment_status(order.id, "FULFILLED")
        with pytest.raises(ValidationError):
            service.delete_order(order.id)

    def test_refunded_order_can_be_deleted(self, service, products):
        order = service.create_order(order_request((products["latte"], 1)))
        service.update_payment_status(order.id, "PAID")
        service.update_payment_status(order.id, "REFUNDED")
        service.delete_order(order.id)

    def test_hard_delete_cascades(self, service, store, products):
        order = service.create_order(order_request((products["latte"], 1), shipping_address=ADDRESS))
        service.delete_order(order.id, hard=True)
        with store.unit_of_work(write=False) as tx:
            assert tx.execute("SELECT COUNT(*) FROM orders").fetchone()[0] == 0
            assert tx.execute("SELECT COUNT(*) FROM order_items").fetchone()[0] == 0
            assert tx.execute("SELECT COUNT(*) FROM shipping_addresses").fetchone()[0] == 0

    def test_soft_deleted_order_can_be_purged(self, service, store, products):
        order = service.create_order(order_request((products["latte"], 1)))
        service.delete_order(order.id)
        service.delete_order(order.id, hard=True)
        assert order_count(store) == 0

    def test_delete_missing(self, service):
        with pytest.raises(NotFoundError):
            service.delete_order("nope")


# ============================================================================
# Duplication
# ============================================================================


class TestDuplicateOrder:

    def test_reprices_from_catalog(self, service, catalog, products):
        original = service.create_order(order_request((products["latte"], 2), shipping_address=ADDRESS))
        catalog.set_price(products["latte"].id, "120")
        duplicate = service.duplicate_order(original.id)

        assert duplicate.id != original.id
        assert duplicate.order_number == "#1002"
        assert duplicate.items[0].unit_price == Decimal("120")
        assert duplicate.subtotal == Decimal("240.00")
        assert duplicate.shipping_address.city == original.shipping_address.city
        assert duplicate.notes == "Duplicate of #1001"
        assert original == service.get_order(original.id)

    def test_revalidates_stock(self, service, catalog, products):
        original = service.create_order(order_request((products["roses"], 3)))
        with pytest.raises(ValidationError):
            service.duplicate_order(original.id)
        assert stock_of(catalog, products["roses"]) == 2

    def test_duplicate_missing(self, service):
        with pytest.raises(NotFoundError):
            service.duplicate_order("nope")


# ============================================================================
# Reporting
# ============================================================================


class TestStats:

    def test_counts_and_revenue(self, service, populated):
        stats = service.get_order_stats()
        assert stats.overview.total_orders == 3
        expected = sum((o.total for o in populated), Decimal("0"))
        assert stats.overview.total_revenue == expected
        assert stats.payment_status[PaymentStatus.PAID] == 1
        assert stats.payment_status[PaymentStatus.PENDING] == 2
        assert stats.fulfillment_status[FulfillmentStatus.UNFULFILLED] == 3
        assert stats.by_section[Section.BOOKS].orders == 1
        assert stats.by_section[Section.FLOWERS].revenue == populated[1].total

    def test_empty(self, service):
        stats = service.get_order_stats()
        assert stats.overview.total_orders == 0
        assert stats.overview.average_order_value == Decimal("0.00")

    def test_section_filter(self, service, populated):
        assert service.get_order_stats({"section": "CAFE"}).overview.total_orders == 1

    def test_camel_case_date_range(self, service, populated):
        created = populated[1].order_date.isoformat()
        assert service.get_order_stats({"dateFrom": created, "dateTo": created}).overview.total_orders == 1


class TestConfiguredService:

    def test_custom_tax_and_currency(self, tmp_path, products):
        service = OrderService.from_config(EngineConfig(root_dir=str(tmp_path), tax_rate=0.17, currency="USD"))
        order = service.create_order(order_request((products["latte"], 1)))
        assert order.tax == Decimal("17.00")
        assert order.currency == "USD"

    def test_order_number_seed(self, tmp_path, products):
        service = OrderService.from_config(EngineConfig(root_dir=str(tmp_path), order_number_seed=5000))
        assert service.create_order(order_request((products["latte"], 1))).order_number == "#5000"

    def test_item_limits(self, tmp_path, products):
        service = OrderService.from_config(EngineConfig(root_dir=str(tmp_path), max_item_quantity=2))
        with pytest.raises(ValidationError):
            service.create_order(order_request((products["latte"], 3)))
