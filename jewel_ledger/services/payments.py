# jewel_ledger/services/payments.py
"""
Payment application for invoices, and the customer-level arrears payment.

A settlement always:
- checks 0 < amount <= due against the row it read
- writes the invoice back with a version compare-and-swap
- moves the customer's materialized total_due by the same amount
- stores the payment as its own document and appends its one Transaction
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import insert, select
from sqlalchemy.engine import Connection

from jewel_ledger.db.schema import customer_payments, invoice_payments, invoices
from jewel_ledger.errors import (
    AmountExceedsDue, ConsistencyViolation, Overpayment, PreconditionFailed, ValidationError,
)
from jewel_ledger.models.common import PaymentDetails, PaymentMode
from jewel_ledger.models.customers import ArrearsAllocationOut, ArrearsPaymentOut
from jewel_ledger.services import customers as customer_service
from jewel_ledger.services import ledger
from jewel_ledger.services.common import (
    check_expected_version, fetch_row, guarded_update, new_id, now,
)
from jewel_ledger.services.pricing import ZERO, money, require_non_negative, require_positive
from jewel_ledger.services.status import derive_invoice_status

logger = logging.getLogger(__name__)

CASH_BUCKETS = ("cash", "upi", "card", "bank")

BUCKET_FOR_MODE: Dict[PaymentMode, str] = {
    PaymentMode.CASH: "cash",
    PaymentMode.UPI: "upi",
    PaymentMode.CARD: "card",
    PaymentMode.BANK: "bank",
    PaymentMode.CHEQUE: "bank",
    PaymentMode.EXCHANGE: "exchange",
}

MODE_FOR_BUCKET: Dict[str, PaymentMode] = {
    "cash": PaymentMode.CASH,
    "upi": PaymentMode.UPI,
    "card": PaymentMode.CARD,
    "bank": PaymentMode.BANK,
    "exchange": PaymentMode.EXCHANGE,
}


@dataclass(frozen=True)
class PaymentResult:
    invoice: dict
    payment_id: str
    transaction_id: str


# ---- Breakdown ----

def resolve_breakdown(
    amount,
    mode,
    details: Optional[PaymentDetails] = None,
) -> Tuple[Decimal, PaymentDetails]:
    """
    Turn (amount, mode, details) into a checked amount and its bucket split.

    For Split the buckets must add up to the amount exactly. For a single
    mode the whole amount lands in that mode's bucket. ``amount`` may be
    omitted, in which case it is the sum of the given buckets.
    """
    try:
        mode = PaymentMode(mode)
    except ValueError:
        raise ValidationError(f"unknown payment mode {mode!r}")

    if mode == PaymentMode.EXCHANGE:
        raise ValidationError("old metal is applied through an old gold adjustment, not as a payment")

    given = {}
    if details is not None:
        if money(details.exchange) != ZERO:
            raise ValidationError("exchange value is applied through an old gold adjustment, not as a payment")
        given = {
            bucket: money(require_non_negative(getattr(details, bucket), bucket))
            for bucket in CASH_BUCKETS
        }
    given_total = sum(given.values(), ZERO)

    if mode == PaymentMode.CREDIT:
        if (amount is not None and money(amount) != ZERO) or given_total != ZERO:
            raise ValidationError("a Credit sale cannot carry a payment")
        return ZERO, PaymentDetails()

    if mode == PaymentMode.SPLIT:
        if details is None:
            raise ValidationError("a Split payment needs a per-mode breakdown")
        amount = given_total if amount is None else money(require_non_negative(amount, "amount"))
        if given_total != amount:
            raise ValidationError(
                f"split breakdown adds up to {given_total}, not the payment amount {amount}"
            )
        return amount, PaymentDetails(**given)

    amount = given_total if amount is None else money(require_non_negative(amount, "amount"))
    return amount, PaymentDetails(**{BUCKET_FOR_MODE[mode]: amount})


def mode_of(breakdown: PaymentDetails) -> PaymentMode:
    """Single mode if one bucket carries the money, otherwise Split."""
    used = [bucket for bucket in MODE_FOR_BUCKET if getattr(breakdown, bucket) > ZERO]
    if len(used) == 1:
        return MODE_FOR_BUCKET[used[0]]
    return PaymentMode.SPLIT


def _take(pool: Dict[str, Decimal], amount: Decimal) -> PaymentDetails:
    """Draw ``amount`` from the bucket pool in cash, upi, card, bank order."""
    taken = {}
    remaining = amount
    for bucket in CASH_BUCKETS:
        if remaining <= ZERO:
            break
        part = min(pool[bucket], remaining)
        if part > ZERO:
            taken[bucket] = part
            pool[bucket] -= part
            remaining -= part
    return PaymentDetails(**taken)


# ---- Invoice settlement ----

def _combined_mode(invoice, mode: str) -> str:
    if money(invoice["paid_amount"]) == ZERO:
        return mode
    if invoice["payment_mode"] == mode:
        return mode
    return PaymentMode.SPLIT.value


def settle_invoice(
    conn: Connection,
    invoice,
    amount: Decimal,
    breakdown: PaymentDetails,
    mode: str,
    expected_version: Optional[int] = None,
):
    """
    Apply ``amount`` to the invoice row that was read in this unit of work.

    Moves paid/due, the bucket split and the derived status, then the
    customer aggregate. Does not write any payment document.
    """
    label = f"Invoice {invoice['invoice_number']}"
    if invoice["cancelled_at"] is not None:
        raise PreconditionFailed(f"{label} is cancelled")
    check_expected_version(invoice, expected_version, label)

    due = money(invoice["due_amount"])
    if amount <= ZERO:
        raise ValidationError("amount must be greater than zero")
    if amount > due:
        logger.warning("Rejected overpayment of %s on %s (due %s)", amount, label, due)
        raise Overpayment(f"Amount {amount} exceeds the due amount {due} on {label}")

    total = money(invoice["total"])
    paid = money(invoice["paid_amount"]) + amount
    new_due = due - amount
    values = {
        "paid_amount": paid,
        "due_amount": new_due,
        "status": derive_invoice_status(new_due, total).value,
        "payment_mode": _combined_mode(invoice, mode),
    }
    for bucket in MODE_FOR_BUCKET:
        column = f"paid_{bucket}"
        values[column] = money(invoice[column]) + money(getattr(breakdown, bucket))

    guarded_update(conn, invoices, invoice, values, label)
    customer_service.adjust_aggregates(conn, invoice["customer_id"], due_delta=-amount)

    logger.info("%s settled %s via %s; due now %s", label, amount, mode, new_due)
    return fetch_row(conn, invoices, invoice["id"], "Invoice")


def record_invoice_payment(
    conn: Connection,
    invoice,
    kind: str,
    amount: Decimal,
    mode: str,
    breakdown: PaymentDetails,
    performed_by: Optional[str] = None,
    customer_payment_id: Optional[str] = None,
) -> Tuple[str, str]:
    """Store the payment document and its ledger entry. Returns (payment id, transaction id)."""
    row = {
        "id": new_id(),
        "invoice_id": invoice["id"],
        "kind": kind,
        "amount": amount,
        "payment_mode": mode,
        "cash": money(breakdown.cash),
        "upi": money(breakdown.upi),
        "card": money(breakdown.card),
        "bank": money(breakdown.bank),
        "customer_payment_id": customer_payment_id,
        "performed_by": performed_by,
        "created_at": now(),
    }
    conn.execute(insert(invoice_payments).values(**row))
    txn_id = ledger.record(conn, ledger.invoice_payment_entry(row, label=invoice["invoice_number"]))
    return row["id"], txn_id


def apply_invoice_payment(
    conn: Connection,
    invoice_id: str,
    amount,
    payment_mode,
    payment_details: Optional[PaymentDetails] = None,
    performed_by: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> PaymentResult:
    invoice = fetch_row(conn, invoices, invoice_id, "Invoice")
    amount = require_positive(amount)
    amount, breakdown = resolve_breakdown(amount, payment_mode, payment_details)
    mode = PaymentMode(payment_mode).value

    updated = settle_invoice(conn, invoice, amount, breakdown, mode, expected_version)
    payment_id, txn_id = record_invoice_payment(
        conn, updated, "PAYMENT", amount, mode, breakdown, performed_by
    )
    return PaymentResult(invoice=updated, payment_id=payment_id, transaction_id=txn_id)


# ---- Arrears ----

def open_invoices(conn: Connection, customer_id: str) -> List:
    """Open invoices oldest first; invoice number breaks ties on equal timestamps."""
    stmt = (
        select(invoices)
        .where(
            invoices.c.customer_id == customer_id,
            invoices.c.cancelled_at.is_(None),
            invoices.c.due_amount > 0,
        )
        .order_by(invoices.c.created_at, invoices.c.invoice_number)
    )
    return conn.execute(stmt).mappings().all()


def clear_arrears(
    conn: Connection,
    customer_id: str,
    amount,
    payment_mode,
    payment_details: Optional[PaymentDetails] = None,
    reference_number: Optional[str] = None,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> ArrearsPaymentOut:
    """
    Pay down a customer's arrears, oldest invoice first.

    One customer_payments row records the whole receipt; each invoice it
    reaches gets its own ARREARS invoice payment and Transaction.
    """
    customer = customer_service.find_customer(conn, customer_id)
    check_expected_version(customer, expected_version, "Customer")

    amount = require_positive(amount)
    amount, breakdown = resolve_breakdown(amount, payment_mode, payment_details)
    mode = PaymentMode(payment_mode)

    total_due = money(customer["total_due"])
    if amount > total_due:
        logger.warning(
            "Rejected arrears payment of %s for customer %s (total due %s)",
            amount, customer_id, total_due,
        )
        raise AmountExceedsDue(f"Amount {amount} exceeds the customer's total due {total_due}")

    candidates = open_invoices(conn, customer_id)
    open_due = sum((money(inv["due_amount"]) for inv in candidates), ZERO)
    if open_due != total_due:
        logger.error(
            "Customer %s total_due %s disagrees with open invoices %s",
            customer_id, total_due, open_due,
        )
        raise ConsistencyViolation(
            "Customer total due disagrees with the open invoices; reconcile before taking arrears",
            details={"stored_total_due": str(total_due), "open_invoice_due": str(open_due)},
        )

    customer_payment_id = new_id()
    conn.execute(
        insert(customer_payments).values(
            id=customer_payment_id,
            customer_id=customer_id,
            amount=amount,
            payment_mode=mode.value,
            reference_number=reference_number,
            notes=notes,
            performed_by=performed_by,
            created_at=now(),
        )
    )

    pool = {bucket: money(getattr(breakdown, bucket)) for bucket in CASH_BUCKETS}
    remaining = amount
    allocations: List[ArrearsAllocationOut] = []
    for invoice in candidates:
        if remaining <= ZERO:
            break
        part = min(remaining, money(invoice["due_amount"]))
        part_breakdown = _take(pool, part)
        part_mode = mode_of(part_breakdown).value if mode == PaymentMode.SPLIT else mode.value

        updated = settle_invoice(conn, invoice, part, part_breakdown, part_mode)
        payment_id, txn_id = record_invoice_payment(
            conn, updated, "ARREARS", part, part_mode, part_breakdown,
            performed_by, customer_payment_id,
        )
        allocations.append(
            ArrearsAllocationOut(
                invoice_id=updated["id"],
                invoice_number=updated["invoice_number"],
                amount=part,
                due_after=money(updated["due_amount"]),
                status=updated["status"],
                invoice_payment_id=payment_id,
                transaction_id=txn_id,
            )
        )
        remaining -= part

    after = customer_service.find_customer(conn, customer_id)
    logger.info(
        "Arrears payment %s for customer %s across %d invoice(s); total due now %s",
        amount, customer_id, len(allocations), after["total_due"],
    )
    return ArrearsPaymentOut(
        customer_payment_id=customer_payment_id,
        customer_id=customer_id,
        amount=amount,
        payment_mode=mode.value,
        allocations=allocations,
        total_due_after=money(after["total_due"]),
    )
