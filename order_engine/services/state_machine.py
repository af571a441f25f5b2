"""
Payment and fulfillment state machines.

Both tables are enum-to-enum adjacency maps. Every state must appear as a
key, terminal states with an empty set; the module refuses to import
otherwise.
"""
from enum import Enum
from typing import Dict, FrozenSet, Type

from ..errors import ValidationError
from ..models.order import FulfillmentStatus, Order, PaymentStatus

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.REFUNDED: frozenset(),
}

FULFILLMENT_TRANSITIONS: Dict[FulfillmentStatus, FrozenSet[FulfillmentStatus]] = {
    FulfillmentStatus.UNFULFILLED: frozenset({
        FulfillmentStatus.FULFILLED, FulfillmentStatus.PARTIAL, FulfillmentStatus.SCHEDULED,
    }),
    FulfillmentStatus.FULFILLED: frozenset({FulfillmentStatus.UNFULFILLED}),
    FulfillmentStatus.PARTIAL: frozenset({FulfillmentStatus.FULFILLED, FulfillmentStatus.UNFULFILLED}),
    FulfillmentStatus.SCHEDULED: frozenset({
        FulfillmentStatus.FULFILLED, FulfillmentStatus.UNFULFILLED, FulfillmentStatus.PARTIAL,
    }),
}


def _check_exhaustive(table: Dict, enum_cls: Type[Enum]):
    missing = set(enum_cls) - set(table)
    if missing:
        raise RuntimeError(f"{enum_cls.__name__} transition table is missing {sorted(m.value for m in missing)}")
    for targets in table.values():
        stray = {t for t in targets if not isinstance(t, enum_cls)}
        if stray:
            raise RuntimeError(f"{enum_cls.__name__} transition table has foreign targets {stray}")


_check_exhaustive(PAYMENT_TRANSITIONS, PaymentStatus)
_check_exhaustive(FULFILLMENT_TRANSITIONS, FulfillmentStatus)


def can_transition(table: Dict, current, target) -> bool:
    return target in table[current]


def _validate(table: Dict, field: str, label: str, current, target):
    if not can_transition(table, current, target):
        raise ValidationError(
            f"Cannot change {label} status from {current.value} to {target.value}",
            details={
                "field": field,
                "current": current.value,
                "target": target.value,
                "allowed": sorted(s.value for s in table[current]),
            },
        )


def validate_payment_transition(current: PaymentStatus, target: PaymentStatus):
    _validate(PAYMENT_TRANSITIONS, "payment_status", "payment", current, target)


def validate_fulfillment_transition(current: FulfillmentStatus, target: FulfillmentStatus):
    _validate(FULFILLMENT_TRANSITIONS, "fulfillment_status", "fulfillment", current, target)


def validate_deletable(order: Order):
    """Paid orders must be refunded first; fulfilled orders are never deleted."""
    if order.payment_status == PaymentStatus.PAID:
        raise ValidationError(
            "Cannot delete paid orders. Please refund the order first.",
            details={"order_number": order.order_number, "payment_status": order.payment_status.value},
        )
    if order.fulfillment_status == FulfillmentStatus.FULFILLED:
        raise ValidationError(
            "Cannot delete orders that have been shipped or delivered",
            details={"order_number": order.order_number, "fulfillment_status": order.fulfillment_status.value},
        )
