import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import ConflictError
from ..models.order import (
    FulfillmentStatus,
    Order,
    OrderItem,
    PaymentStatus,
    Section,
    ShippingAddress,
)

logger = logging.getLogger(__name__)

DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"

SORT_COLUMNS = {
    "order_date": "order_date",
    "created_at": "created_at",
    "order_number": "order_seq",
    "total": "CAST(total AS REAL)",
}

MUTABLE_COLUMNS = {"payment_status", "fulfillment_status", "notes", "tags", "payment_method"}

ORDER_COLUMNS = (
    "id", "order_number", "order_seq", "customer_id", "customer_name", "customer_email",
    "customer_phone", "guest_order", "guest_token", "section", "payment_status",
    "fulfillment_status", "subtotal", "discount", "tax", "shipping_cost", "total",
    "currency", "payment_method", "notes", "tags", "order_date", "deleted_at",
    "created_at", "updated_at", "created_by",
)

ADDRESS_COLUMNS = ("full_name", "phone", "email", "address", "city", "state", "postal_code", "country")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    # fixed-width UTC strings so lexical order equals chronological order
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(DB_TIME_FORMAT)


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def new_id() -> str:
    return uuid.uuid4().hex


class UnitOfWork:
    """
    One connection, one transaction.

    Write units start with BEGIN IMMEDIATE, taking SQLite's reserved lock up
    front: concurrent writers queue on the busy timeout instead of racing
    between a read and the write that depends on it. Leaving the block
    commits; an exception rolls everything back.
    """

    def __init__(self, db_path: str, write: bool = True, timeout: float = 30.0):
        self.db_path = db_path
        self.write = write
        self.timeout = timeout
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self):
        self.conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.execute("BEGIN IMMEDIATE" if self.write else "BEGIN")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.conn.execute("COMMIT")
            else:
                self.conn.execute("ROLLBACK")
        finally:
            self.conn.close()
            self.conn = None
        return False

    def execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, tuple(params))

    def require_write(self):
        if not self.write:
            raise RuntimeError("This operation needs a write unit of work")


class SQLiteOrderStore:
    """Persists the order aggregate (order, items, shipping address) in SQLite."""

    def __init__(self, db_path: str, busy_timeout: float = 30.0):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._ensure_storage()

    @classmethod
    def from_config(cls, config) -> "SQLiteOrderStore":
        return cls(config.db_path, busy_timeout=config.busy_timeout)

    def unit_of_work(self, write: bool = True) -> UnitOfWork:
        return UnitOfWork(self.db_path, write=write, timeout=self.busy_timeout)

    @contextmanager
    def borrow(self, tx: Optional[UnitOfWork] = None, write: bool = True):
        """Joins the caller's unit of work, or runs in a fresh one when there is none."""
        if tx is not None:
            yield tx
            return
        with self.unit_of_work(write=write) as own:
            yield own

    def _ensure_storage(self):
        os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        cursor = conn.cursor()

        # WAL lets readers proceed while a checkout holds the write lock
        cursor.execute("PRAGMA journal_mode=WAL")

        # Catalog and customer tables belong to the collaborators but share the
        # database so stock and stats move in the same transaction as the order.
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS products (
                id TEXT PRIMARY KEY,
                sku TEXT NOT NULL UNIQUE,
                price TEXT NOT NULL,
                stock_quantity INTEGER NOT NULL DEFAULT 0 CHECK (stock_quantity >= 0),
                section TEXT NOT NULL,
                details TEXT NOT NULL,
                deleted_at TEXT
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS product_variants (
                id TEXT PRIMARY KEY,
                product_id TEXT NOT NULL REFERENCES products(id) ON DELETE CASCADE,
                sku TEXT,
                price TEXT
            )
        ''')
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS customers (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                phone TEXT,
                total_orders INTEGER NOT NULL DEFAULT 0,
                total_spent TEXT NOT NULL DEFAULT '0',
                average_order_value TEXT NOT NULL DEFAULT '0',
                last_order_date TEXT,
                created_from_guest INTEGER NOT NULL DEFAULT 0
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                order_number TEXT NOT NULL UNIQUE,
                order_seq INTEGER NOT NULL UNIQUE,
                customer_id TEXT,
                customer_name TEXT NOT NULL,
                customer_email TEXT NOT NULL,
                customer_phone TEXT,
                guest_order INTEGER NOT NULL DEFAULT 0,
                guest_token TEXT,
                section TEXT NOT NULL,
                payment_status TEXT NOT NULL,
                fulfillment_status TEXT NOT NULL,
                subtotal TEXT NOT NULL,
                discount TEXT NOT NULL,
                tax TEXT NOT NULL,
                shipping_cost TEXT NOT NULL,
                total TEXT NOT NULL,
                currency TEXT NOT NULL,
                payment_method TEXT,
                notes TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                order_date TEXT NOT NULL,
                deleted_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                created_by TEXT
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_orders_email ON orders(customer_email)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_orders_customer ON orders(customer_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_orders_date ON orders(order_date)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS order_items (
                id TEXT PRIMARY KEY,
                order_id TEXT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                product_id TEXT NOT NULL,
                product_name TEXT NOT NULL,
                sku TEXT NOT NULL,
                variant_id TEXT,
                quantity INTEGER NOT NULL CHECK (quantity > 0),
                unit_price TEXT NOT NULL,
                line_total TEXT NOT NULL
            )
        ''')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_items_order ON order_items(order_id)')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS shipping_addresses (
                order_id TEXT PRIMARY KEY REFERENCES orders(id) ON DELETE CASCADE,
                full_name TEXT NOT NULL,
                phone TEXT NOT NULL,
                email TEXT,
                address TEXT NOT NULL,
                city TEXT NOT NULL,
                state TEXT NOT NULL,
                postal_code TEXT NOT NULL,
                country TEXT NOT NULL
            )
        ''')

        # Named monotonic counters (order numbers)
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS sequences (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        ''')

        conn.commit()
        conn.close()
        logger.debug(f"Order store ready at {self.db_path}")

    # --- Sequences ---

    def get_sequence(self, name: str, tx: UnitOfWork) -> Optional[int]:
        row = tx.execute('SELECT value FROM sequences WHERE name = ?', (name,)).fetchone()
        return row[0] if row else None

    def set_sequence(self, name: str, value: int, tx: UnitOfWork):
        tx.require_write()
        tx.execute('INSERT OR REPLACE INTO sequences (name, value) VALUES (?, ?)', (name, value))

    def latest_order_number(self, tx: UnitOfWork) -> Optional[str]:
        row = tx.execute(
            'SELECT order_number FROM orders ORDER BY created_at DESC, rowid DESC LIMIT 1'
        ).fetchone()
        return row[0] if row else None

    # --- Writes ---

    def save_order(self, order: Order, order_seq: int, tx: UnitOfWork):
        """Inserts the order row, its item rows and its address row."""
        tx.require_write()
        values = self._order_to_row(order, order_seq)
        placeholders = ','.join(['?'] * len(ORDER_COLUMNS))
        try:
            tx.execute(
                f'INSERT INTO orders ({",".join(ORDER_COLUMNS)}) VALUES ({placeholders})',
                [values[c] for c in ORDER_COLUMNS],
            )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Order number {order.order_number} is already taken",
                details={"order_number": order.order_number},
            ) from exc

        for position, item in enumerate(order.items):
            tx.execute('''
                INSERT INTO order_items (id, order_id, position, product_id, product_name, sku,
                                         variant_id, quantity, unit_price, line_total)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (item.id, order.id, position, item.product_id, item.product_name, item.sku,
                  item.variant_id, item.quantity, str(item.unit_price), str(item.line_total)))

        if order.shipping_address:
            address = order.shipping_address
            tx.execute(f'''
                INSERT INTO shipping_addresses (order_id, {",".join(ADDRESS_COLUMNS)})
                VALUES ({",".join(['?'] * (len(ADDRESS_COLUMNS) + 1))})
            ''', [order.id] + [getattr(address, c) for c in ADDRESS_COLUMNS])

    def update_order_fields(self, order_id: str, fields: Dict[str, Any], tx: UnitOfWork):
        tx.require_write()
        unknown = set(fields) - MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Not mutable: {sorted(unknown)}")
        values = {}
        for name, value in fields.items():
            if name == "tags":
                value = json.dumps(value or [])
            elif isinstance(value, (PaymentStatus, FulfillmentStatus)):
                value = value.value
            values[name] = value
        values["updated_at"] = to_db_time(utcnow())
        assignments = ', '.join(f'{name} = ?' for name in values)
        tx.execute(f'UPDATE orders SET {assignments} WHERE id = ?', list(values.values()) + [order_id])

    def soft_delete(self, order_id: str, tx: UnitOfWork):
        tx.require_write()
        now = to_db_time(utcnow())
        tx.execute('UPDATE orders SET deleted_at = ?, updated_at = ? WHERE id = ?', (now, now, order_id))

    def hard_delete(self, order_id: str, tx: UnitOfWork):
        tx.require_write()
        # order_items and shipping_addresses go with it (ON DELETE CASCADE)
        tx.execute('DELETE FROM orders WHERE id = ?', (order_id,))

    def link_guest_orders(self, customer_id: str, email: str, tx: UnitOfWork) -> int:
        tx.require_write()
        cursor = tx.execute('''
            UPDATE orders SET customer_id = ?, guest_order = 0, updated_at = ?
            WHERE customer_email = ? AND customer_id IS NULL AND guest_order = 1
        ''', (customer_id, to_db_time(utcnow()), email))
        return cursor.rowcount

    # --- Reads ---

    def count_guest_orders(self, email: str, tx: UnitOfWork) -> int:
        row = tx.execute('''
            SELECT COUNT(*) FROM orders
            WHERE customer_email = ? AND customer_id IS NULL AND guest_order = 1 AND deleted_at IS NULL
        ''', (email,)).fetchone()
        return row[0]

    def fetch_order(self, order_id: str, tx: UnitOfWork, include_deleted: bool = False) -> Optional[Order]:
        sql = 'SELECT * FROM orders WHERE id = ?'
        if not include_deleted:
            sql += ' AND deleted_at IS NULL'
        row = tx.execute(sql, (order_id,)).fetchone()
        return self._hydrate([row], tx)[0] if row else None

    def fetch_order_by_number(self, order_number: str, tx: UnitOfWork,
                              email: Optional[str] = None) -> Optional[Order]:
        sql = 'SELECT * FROM orders WHERE order_number = ? AND deleted_at IS NULL'
        params: List[Any] = [order_number]
        if email is not None:
            sql += ' AND customer_email = ?'
            params.append(email)
        row = tx.execute(sql, params).fetchone()
        return self._hydrate([row], tx)[0] if row else None

    def search_orders(self, filters, limit: int, offset: int, tx: UnitOfWork) -> Tuple[List[Order], int]:
        where, params = self._where(filters)
        total = tx.execute(f'SELECT COUNT(*) FROM orders WHERE {where}', params).fetchone()[0]

        column = SORT_COLUMNS[filters.sort_by]
        direction = 'ASC' if filters.sort_order == 'asc' else 'DESC'
        rows = tx.execute(
            f'SELECT * FROM orders WHERE {where} ORDER BY {column} {direction}, order_seq {direction} '
            f'LIMIT ? OFFSET ?',
            params + [limit, offset],
        ).fetchall()
        return self._hydrate(rows, tx), total

    def stats_rows(self, filters, tx: UnitOfWork) -> List[sqlite3.Row]:
        where, params = self._where(filters)
        return tx.execute(
            f'SELECT total, payment_status, fulfillment_status, section FROM orders WHERE {where}',
            params,
        ).fetchall()

    def customer_order_history(self, customer_id: str, tx: UnitOfWork) -> List[Tuple[Decimal, datetime]]:
        """(total, order_date) of a customer's live orders, newest first."""
        rows = tx.execute('''
            SELECT total, order_date FROM orders
            WHERE customer_id = ? AND deleted_at IS NULL
            ORDER BY order_date DESC
        ''', (customer_id,)).fetchall()
        return [(Decimal(r["total"]), from_db_time(r["order_date"])) for r in rows]

    def _where(self, filters) -> Tuple[str, List[Any]]:
        clauses = ['deleted_at IS NULL']
        params: List[Any] = []

        search = getattr(filters, "search", None)
        if search:
            pattern = '%' + search.lower().replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_') + '%'
            clauses.append(
                "(lower(order_number) LIKE ? ESCAPE '\\' OR lower(customer_name) LIKE ? ESCAPE '\\' "
                "OR lower(customer_email) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern] * 3)

        for name in ("section", "payment_status", "fulfillment_status"):
            value = getattr(filters, name, None)
            if value is not None:
                clauses.append(f'{name} = ?')
                params.append(value.value)

        customer_id = getattr(filters, "customer_id", None)
        if customer_id:
            clauses.append('customer_id = ?')
            params.append(customer_id)

        if getattr(filters, "date_from", None):
            clauses.append('order_date >= ?')
            params.append(to_db_time(filters.date_from))
        if getattr(filters, "date_to", None):
            clauses.append('order_date <= ?')
            params.append(to_db_time(filters.date_to))

        return ' AND '.join(clauses), params

    def _hydrate(self, rows: List[sqlite3.Row], tx: UnitOfWork) -> List[Order]:
        """Builds full aggregates, loading children for all rows in two queries."""
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        placeholders = ','.join(['?'] * len(ids))

        items: Dict[str, List[OrderItem]] = {order_id: [] for order_id in ids}
        for r in tx.execute(
            f'SELECT * FROM order_items WHERE order_id IN ({placeholders}) ORDER BY order_id, position', ids
        ).fetchall():
            items[r["order_id"]].append(OrderItem(
                id=r["id"],
                product_id=r["product_id"],
                product_name=r["product_name"],
                sku=r["sku"],
                variant_id=r["variant_id"],
                quantity=r["quantity"],
                unit_price=Decimal(r["unit_price"]),
                line_total=Decimal(r["line_total"]),
            ))

        addresses = {}
        for r in tx.execute(
            f'SELECT * FROM shipping_addresses WHERE order_id IN ({placeholders})', ids
        ).fetchall():
            addresses[r["order_id"]] = ShippingAddress(**{c: r[c] for c in ADDRESS_COLUMNS})

        return [self._row_to_order(row, items[row["id"]], addresses.get(row["id"])) for row in rows]

    def _row_to_order(self, row, items: List[OrderItem], address: Optional[ShippingAddress]) -> Order:
        return Order(
            id=row["id"],
            order_number=row["order_number"],
            customer_id=row["customer_id"],
            customer_name=row["customer_name"],
            customer_email=row["customer_email"],
            customer_phone=row["customer_phone"],
            guest_order=bool(row["guest_order"]),
            guest_token=row["guest_token"],
            section=Section(row["section"]),
            payment_status=PaymentStatus(row["payment_status"]),
            fulfillment_status=FulfillmentStatus(row["fulfillment_status"]),
            subtotal=Decimal(row["subtotal"]),
            discount=Decimal(row["discount"]),
            tax=Decimal(row["tax"]),
            shipping_cost=Decimal(row["shipping_cost"]),
            total=Decimal(row["total"]),
            currency=row["currency"],
            payment_method=row["payment_method"],
            notes=row["notes"],
            tags=json.loads(row["tags"]),
            order_date=from_db_time(row["order_date"]),
            deleted_at=from_db_time(row["deleted_at"]),
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
            created_by=row["created_by"],
            items=items,
            shipping_address=address,
        )

    def _order_to_row(self, order: Order, order_seq: int) -> Dict[str, Any]:
        return {
            "id": order.id,
            "order_number": order.order_number,
            "order_seq": order_seq,
            "customer_id": order.customer_id,
            "customer_name": order.customer_name,
            "customer_email": order.customer_email,
            "customer_phone": order.customer_phone,
            "guest_order": int(order.guest_order),
            "guest_token": order.guest_token,
            "section": order.section.value,
            "payment_status": order.payment_status.value,
            "fulfillment_status": order.fulfillment_status.value,
            "subtotal": str(order.subtotal),
            "discount": str(order.discount),
            "tax": str(order.tax),
            "shipping_cost": str(order.shipping_cost),
            "total": str(order.total),
            "currency": order.currency,
            "payment_method": order.payment_method,
            "notes": order.notes,
            "tags": json.dumps(order.tags),
            "order_date": to_db_time(order.order_date),
            "deleted_at": to_db_time(order.deleted_at),
            "created_at": to_db_time(order.created_at),
            "updated_at": to_db_time(order.updated_at),
            "created_by": order.created_by,
        }
