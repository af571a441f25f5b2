import pytest

from order_engine.config import EngineConfig
from order_engine.models.order import Section
from order_engine.services.guest_orders import GuestOrderService
from order_engine.services.order_service import OrderService


@pytest.fixture
def config(tmp_path):
    return EngineConfig(root_dir=str(tmp_path))


@pytest.fixture
def service(config):
    return OrderService.from_config(config)


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def catalog(service):
    return service.catalog


@pytest.fixture
def customers(service):
    return service.customers


@pytest.fixture
def guest_service(service):
    return GuestOrderService(service.store, service.customers)


@pytest.fixture
def products(catalog):
    """A small catalog spanning all three sections."""
    return {
        "latte": catalog.add_product("CAFE-LATTE", "100.00", 50, Section.CAFE, "Latte"),
        "roses": catalog.add_product("FLW-ROSES", "1250.50", 5, Section.FLOWERS, "Red Roses"),
        "novel": catalog.add_product("BK-001", "899", 10, Section.BOOKS, "Dune", author="Frank Herbert"),
    }


@pytest.fixture
def customer(customers):
    return customers.add_customer("ayesha@example.com", "Ayesha Khan", phone="+92 300 1234567")


def order_request(*lines, email="guest@example.com", name="Guest Buyer", **extra):
    """Builds a create-order payload from (product, quantity) pairs."""
    request = {
        "customer": {"name": name, "email": email},
        "items": [{"product_id": product.id, "quantity": quantity} for product, quantity in lines],
    }
    request.update(extra)
    return request


ADDRESS = {
    "full_name": "Guest Buyer",
    "phone": "+92 321 7654321",
    "address": "House 12, Street 4, F-7/2",
    "city": "Islamabad",
    "state": "ICT",
    "postal_code": "44000",
}
