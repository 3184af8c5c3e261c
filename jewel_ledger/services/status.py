# jewel_ledger/services/status.py
"""
The one place document statuses are derived from balances.

Status is never stored from client input; it is recomputed from the numeric
fields every time a balance changes.
"""

from decimal import Decimal
from typing import Dict, FrozenSet

from jewel_ledger.errors import InvalidTransition
from jewel_ledger.models.common import InvoiceStatus, OrderPaymentStatus, OrderStatus

ZERO = Decimal("0")


def derive_invoice_status(due_amount: Decimal, total: Decimal) -> InvoiceStatus:
    """
    - Paid    if nothing is due
    - Partial if something was settled but not everything
    - Pending if nothing was settled yet
    """
    if due_amount <= ZERO:
        return InvoiceStatus.PAID
    if due_amount < total:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PENDING


def derive_order_payment_status(total_amount: Decimal, paid_amount: Decimal) -> OrderPaymentStatus:
    if total_amount > ZERO and paid_amount >= total_amount:
        return OrderPaymentStatus.FULL_PAID
    if paid_amount > ZERO:
        return OrderPaymentStatus.ADVANCE_PAID
    if total_amount == ZERO:
        return OrderPaymentStatus.FULL_PAID
    return OrderPaymentStatus.UNPAID


def order_status_after_payment(current: OrderStatus, paid_amount: Decimal) -> OrderStatus:
    """PENDING moves to PARTIALLY_PAID on the first payment; READY stays READY."""
    if current == OrderStatus.PENDING and paid_amount > ZERO:
        return OrderStatus.PARTIALLY_PAID
    return current


TERMINAL_ORDER_STATES: FrozenSet[OrderStatus] = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED}
)

# Manual transitions only. PARTIALLY_PAID is reached by payments and DELIVERED
# only through delivery (which produces the invoice).
ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.PARTIALLY_PAID: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def is_terminal(status: OrderStatus) -> bool:
    return OrderStatus(status) in TERMINAL_ORDER_STATES


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    current = OrderStatus(current)
    target = OrderStatus(target)
    if target not in ORDER_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Order cannot move from {current.value} to {target.value}"
        )
