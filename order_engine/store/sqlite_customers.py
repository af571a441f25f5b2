from decimal import Decimal
from typing import Optional

from ..collaborators.base import CustomerDirectory
from ..models.catalog import CustomerRecord, CustomerStats
from .sqlite_store import SQLiteOrderStore, UnitOfWork, from_db_time, new_id, to_db_time


class SQLiteCustomerDirectory(CustomerDirectory):
    def __init__(self, store: SQLiteOrderStore):
        self.store = store

    def find_by_email(self, email: str, tx: Optional[UnitOfWork] = None) -> Optional[CustomerRecord]:
        with self.store.borrow(tx, write=False) as uow:
            row = uow.execute('SELECT * FROM customers WHERE email = ?', (email.strip().lower(),)).fetchone()
        return self._row_to_customer(row) if row else None

    def get_customer(self, customer_id: str, tx: Optional[UnitOfWork] = None) -> Optional[CustomerRecord]:
        with self.store.borrow(tx, write=False) as uow:
            row = uow.execute('SELECT * FROM customers WHERE id = ?', (customer_id,)).fetchone()
        return self._row_to_customer(row) if row else None

    def write_stats(self, customer_id: str, stats: CustomerStats, tx: UnitOfWork) -> None:
        tx.require_write()
        tx.execute('''
            UPDATE customers
            SET total_orders = ?, total_spent = ?, average_order_value = ?, last_order_date = ?
            WHERE id = ?
        ''', (stats.total_orders, str(stats.total_spent), str(stats.average_order_value),
              to_db_time(stats.last_order_date), customer_id))

    def mark_created_from_guest(self, customer_id: str, tx: UnitOfWork):
        tx.require_write()
        tx.execute('UPDATE customers SET created_from_guest = 1 WHERE id = ?', (customer_id,))

    def add_customer(self, email: str, name: str, phone: Optional[str] = None,
                     tx: Optional[UnitOfWork] = None) -> CustomerRecord:
        customer = CustomerRecord(id=new_id(), email=email.strip().lower(), name=name, phone=phone)
        with self.store.borrow(tx) as uow:
            uow.execute(
                'INSERT INTO customers (id, email, name, phone) VALUES (?, ?, ?, ?)',
                (customer.id, customer.email, customer.name, customer.phone),
            )
        return customer

    def _row_to_customer(self, row) -> CustomerRecord:
        return CustomerRecord(
            id=row["id"],
            email=row["email"],
            name=row["name"],
            phone=row["phone"],
            stats=CustomerStats(
                total_orders=row["total_orders"],
                total_spent=Decimal(row["total_spent"]),
                average_order_value=Decimal(row["average_order_value"]),
                last_order_date=from_db_time(row["last_order_date"]),
            ),
            created_from_guest=bool(row["created_from_guest"]),
        )
