from abc import ABC, abstractmethod
from typing import Optional

from ..models.catalog import CustomerRecord, CustomerStats, ProductRecord, ProductVariant


class CatalogReader(ABC):
    """
    Read side of the catalog/inventory subsystem, plus its one write the
    order engine is allowed: a conditional stock decrement.
    Every call takes the caller's unit of work.
    """

    @abstractmethod
    def get_product(self, product_id: str, tx) -> Optional[ProductRecord]:
        """Returns the live product record, soft-deleted ones included."""
        pass

    @abstractmethod
    def get_variant(self, variant_id: str, tx) -> Optional[ProductVariant]:
        pass

    @abstractmethod
    def decrement_stock(self, product_id: str, quantity: int, tx) -> bool:
        """
        Atomically removes `quantity` units if at least that many are in stock.
        Returns False, leaving stock untouched, when they are not.
        """
        pass


class CustomerDirectory(ABC):

    @abstractmethod
    def find_by_email(self, email: str, tx) -> Optional[CustomerRecord]:
        pass

    @abstractmethod
    def get_customer(self, customer_id: str, tx) -> Optional[CustomerRecord]:
        pass

    @abstractmethod
    def write_stats(self, customer_id: str, stats: CustomerStats, tx) -> None:
        pass
