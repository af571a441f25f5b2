import re

from ..errors import ValidationError
from ..store.sqlite_store import SQLiteOrderStore, UnitOfWork

SEQUENCE_NAME = "order_number"
_TRAILING_DIGITS = re.compile(r"(\d+)$")


def format_order_number(value: int) -> str:
    return f"#{value}"


def parse_order_number(order_number: str) -> int:
    """`#1001`, `1001` and `ORD-1001` all parse to 1001."""
    match = _TRAILING_DIGITS.search((order_number or "").strip())
    if not match:
        raise ValidationError(f"Invalid order number: {order_number!r}")
    return int(match.group(1))


def normalize_order_number(order_number: str) -> str:
    return format_order_number(parse_order_number(order_number))


class OrderNumberAllocator:
    """
    Hands out `#<n>` numbers from a counter row.

    Must run in the same write unit of work that inserts the order: the
    unit holds the database write lock from its first statement, so two
    checkouts can never read the same counter value. The first allocation
    on a database bootstraps from the most recently created order, or from
    the seed when there are none.
    """

    def __init__(self, store: SQLiteOrderStore, seed: int = 1001):
        self.store = store
        self.seed = seed

    def next_order_number(self, tx: UnitOfWork) -> str:
        tx.require_write()
        current = self.store.get_sequence(SEQUENCE_NAME, tx)
        if current is None:
            latest = self.store.latest_order_number(tx)
            current = parse_order_number(latest) if latest else self.seed - 1
        next_value = current + 1
        self.store.set_sequence(SEQUENCE_NAME, next_value, tx)
        return format_order_number(next_value)
