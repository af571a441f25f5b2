import json
from decimal import Decimal
from typing import Optional

from ..collaborators.base import CatalogReader
from ..models.catalog import ProductRecord, ProductVariant, details_for
from ..models.order import Section
from .sqlite_store import SQLiteOrderStore, UnitOfWork, from_db_time, new_id, to_db_time, utcnow


class SQLiteCatalog(CatalogReader):
    """
    Catalog reader over the products tables of the order database.
    The add/set helpers exist for seeding and tests; the engine itself
    only reads and decrements.
    """

    def __init__(self, store: SQLiteOrderStore):
        self.store = store

    def get_product(self, product_id: str, tx: Optional[UnitOfWork] = None) -> Optional[ProductRecord]:
        with self.store.borrow(tx, write=False) as uow:
            row = uow.execute('SELECT * FROM products WHERE id = ?', (product_id,)).fetchone()
        return self._row_to_product(row) if row else None

    def get_variant(self, variant_id: str, tx: Optional[UnitOfWork] = None) -> Optional[ProductVariant]:
        with self.store.borrow(tx, write=False) as uow:
            row = uow.execute('SELECT * FROM product_variants WHERE id = ?', (variant_id,)).fetchone()
        if not row:
            return None
        return ProductVariant(
            id=row["id"],
            product_id=row["product_id"],
            sku=row["sku"],
            price=Decimal(row["price"]) if row["price"] is not None else None,
        )

    def decrement_stock(self, product_id: str, quantity: int, tx: UnitOfWork) -> bool:
        tx.require_write()
        cursor = tx.execute('''
            UPDATE products SET stock_quantity = stock_quantity - ?
            WHERE id = ? AND stock_quantity >= ?
        ''', (quantity, product_id, quantity))
        return cursor.rowcount == 1

    def add_product(self, sku: str, price, stock_quantity: int, section: Section, name: str,
                    author: Optional[str] = None, tx: Optional[UnitOfWork] = None) -> ProductRecord:
        product = ProductRecord(
            id=new_id(),
            sku=sku,
            price=Decimal(str(price)),
            stock_quantity=stock_quantity,
            section=Section(section),
            details=details_for(Section(section), name, author),
        )
        with self.store.borrow(tx) as uow:
            uow.execute('''
                INSERT INTO products (id, sku, price, stock_quantity, section, details)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (product.id, product.sku, str(product.price), product.stock_quantity,
                  product.section.value, product.details.model_dump_json()))
        return product

    def add_variant(self, product_id: str, sku: Optional[str] = None, price=None,
                    tx: Optional[UnitOfWork] = None) -> ProductVariant:
        variant = ProductVariant(
            id=new_id(),
            product_id=product_id,
            sku=sku,
            price=Decimal(str(price)) if price is not None else None,
        )
        with self.store.borrow(tx) as uow:
            uow.execute(
                'INSERT INTO product_variants (id, product_id, sku, price) VALUES (?, ?, ?, ?)',
                (variant.id, product_id, sku, str(variant.price) if variant.price is not None else None),
            )
        return variant

    def set_price(self, product_id: str, price, tx: Optional[UnitOfWork] = None):
        with self.store.borrow(tx) as uow:
            uow.execute('UPDATE products SET price = ? WHERE id = ?', (str(Decimal(str(price))), product_id))

    def set_stock(self, product_id: str, stock_quantity: int, tx: Optional[UnitOfWork] = None):
        with self.store.borrow(tx) as uow:
            uow.execute('UPDATE products SET stock_quantity = ? WHERE id = ?', (stock_quantity, product_id))

    def soft_delete_product(self, product_id: str, tx: Optional[UnitOfWork] = None):
        with self.store.borrow(tx) as uow:
            uow.execute('UPDATE products SET deleted_at = ? WHERE id = ?', (to_db_time(utcnow()), product_id))

    def _row_to_product(self, row) -> ProductRecord:
        return ProductRecord(
            id=row["id"],
            sku=row["sku"],
            price=Decimal(row["price"]),
            stock_quantity=row["stock_quantity"],
            section=Section(row["section"]),
            details=json.loads(row["details"]),
            deleted_at=from_db_time(row["deleted_at"]),
        )
