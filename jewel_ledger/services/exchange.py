# jewel_ledger/services/exchange.py
"""
Old-metal records: valuation, payout, and single-shot adjustment against an invoice.

Status machine: Pending -> Adjusted, or PaidOut at creation. Both are terminal.
An adjustment for less than the record's value forfeits the remainder.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import insert, select
from sqlalchemy.engine import Connection

from jewel_ledger.db.schema import invoices, old_gold
from jewel_ledger.errors import (
    AlreadyAdjusted, AmountExceedsCredit, AmountExceedsDue, NotFound, PreconditionFailed,
    ValidationError,
)
from jewel_ledger.models.common import MetalCategory, OldGoldStatus, PaymentDetails, PaymentMode
from jewel_ledger.models.old_gold import AdjustedAgainstOut, OldGoldAdjustOut, OldGoldOut
from jewel_ledger.services import customers as customer_service
from jewel_ledger.services import ledger, payments
from jewel_ledger.services.common import (
    check_expected_version, fetch_row, guarded_update, new_id, now,
)
from jewel_ledger.services.pricing import (
    ZERO, money, old_gold_value, purity_factor, require_non_negative, require_positive, weight_value,
)

logger = logging.getLogger(__name__)

PAYOUT_MODES = frozenset(
    {PaymentMode.CASH, PaymentMode.UPI, PaymentMode.CARD, PaymentMode.BANK, PaymentMode.CHEQUE}
)


def _row_to_old_gold(row) -> OldGoldOut:
    adjusted_against = None
    if row["adjusted_invoice_id"] is not None:
        adjusted_against = AdjustedAgainstOut(
            invoice_id=row["adjusted_invoice_id"],
            invoice_number=row.get("adjusted_invoice_number"),
            amount=money(row["adjusted_amount"]),
            adjusted_at=row["adjusted_at"],
        )
    return OldGoldOut(
        id=row["id"],
        customer_id=row["customer_id"],
        category=row["category"],
        description=row["description"],
        weight=row["weight"],
        purity=row["purity"],
        rate=money(row["rate"]),
        total_value=money(row["total_value"]),
        status=row["status"],
        adjusted_against=adjusted_against,
        payout_mode=row["payout_mode"],
        purity_tested=row["purity_tested"],
        test_notes=row["test_notes"],
        notes=row["notes"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        version=row["version"],
    )


def _old_gold_query():
    return select(old_gold, invoices.c.invoice_number.label("adjusted_invoice_number")).select_from(
        old_gold.outerjoin(invoices, invoices.c.id == old_gold.c.adjusted_invoice_id)
    )


def load_old_gold(conn: Connection, record_id: str) -> OldGoldOut:
    row = conn.execute(_old_gold_query().where(old_gold.c.id == record_id)).mappings().first()
    if row is None:
        raise NotFound("Old gold record not found")
    return _row_to_old_gold(row)


def list_old_gold(
    conn: Connection,
    status: Optional[OldGoldStatus] = None,
    customer_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[OldGoldOut]:
    stmt = _old_gold_query()
    if status is not None:
        stmt = stmt.where(old_gold.c.status == OldGoldStatus(status).value)
    if customer_id is not None:
        stmt = stmt.where(old_gold.c.customer_id == customer_id)
    stmt = stmt.order_by(old_gold.c.created_at.desc(), old_gold.c.id).limit(limit).offset(offset)
    return [_row_to_old_gold(row) for row in conn.execute(stmt).mappings().all()]


def insert_record(
    conn: Connection,
    customer_id: str,
    weight,
    purity,
    rate,
    total_value: Optional[Decimal] = None,
    category=MetalCategory.GOLD,
    description: Optional[str] = None,
    status: OldGoldStatus = OldGoldStatus.PENDING,
    payout_mode: Optional[str] = None,
    purity_tested: bool = False,
    test_notes: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
):
    """
    Value and store one record. ``total_value`` overrides the computed value
    (exchange lines priced at the counter).
    """
    weight = weight_value(require_non_negative(weight, "weight"))
    rate = money(require_non_negative(rate, "rate"))
    purity = str(purity).strip() if purity is not None else ""
    purity_factor(purity)
    if total_value is None:
        total_value = old_gold_value(weight, rate, purity)
    else:
        if weight <= ZERO:
            raise ValidationError("weight must be greater than zero")
        total_value = money(require_non_negative(total_value, "amount"))
    if total_value <= ZERO:
        raise ValidationError("old gold value must be greater than zero")

    record_id = new_id()
    conn.execute(
        insert(old_gold).values(
            id=record_id,
            customer_id=customer_id,
            category=MetalCategory(category).value,
            description=description,
            weight=weight,
            purity=purity,
            rate=rate,
            total_value=total_value,
            status=OldGoldStatus(status).value,
            adjusted_amount=ZERO,
            payout_mode=payout_mode,
            purity_tested=purity_tested,
            test_notes=test_notes,
            notes=notes,
            created_by=created_by,
            created_at=now(),
            version=1,
        )
    )
    return fetch_row(conn, old_gold, record_id, "Old gold record")


def create_old_gold_record(
    conn: Connection,
    customer_id: str,
    weight,
    purity,
    rate,
    category=MetalCategory.GOLD,
    description: Optional[str] = None,
    payout_mode=None,
    purity_tested: bool = False,
    test_notes: Optional[str] = None,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
):
    """
    Without ``payout_mode`` the record is Pending credit for a later invoice.
    With it the shop paid the customer: PaidOut plus one DEBIT OLD_GOLD entry.
    """
    customer_service.find_customer(conn, customer_id)

    status = OldGoldStatus.PENDING
    if payout_mode is not None:
        try:
            payout_mode = PaymentMode(payout_mode)
        except ValueError:
            raise ValidationError(f"unknown payment mode {payout_mode!r}")
        if payout_mode not in PAYOUT_MODES:
            raise ValidationError(f"{payout_mode.value} cannot be used to pay out old gold")
        payout_mode = payout_mode.value
        status = OldGoldStatus.PAID_OUT

    record = insert_record(
        conn,
        customer_id,
        weight,
        purity,
        rate,
        category=category,
        description=description,
        status=status,
        payout_mode=payout_mode,
        purity_tested=purity_tested,
        test_notes=test_notes,
        notes=notes,
        created_by=performed_by,
    )
    if status == OldGoldStatus.PAID_OUT:
        ledger.record(conn, ledger.old_gold_entry(record))
        logger.info("Old gold %s bought for %s via %s", record["id"], record["total_value"], payout_mode)
    else:
        logger.info("Old gold %s held as credit worth %s", record["id"], record["total_value"])
    return record


def mark_adjusted(conn: Connection, record, invoice_id: str, amount: Decimal) -> str:
    """Pending -> Adjusted against ``invoice_id``; appends the ADJUSTMENT entry."""
    if record["status"] != OldGoldStatus.PENDING.value:
        logger.warning("Old gold %s is %s, refusing a second adjustment", record["id"], record["status"])
        raise AlreadyAdjusted(f"Old gold record is already {record['status']}")
    value = money(record["total_value"])
    if amount > value:
        raise AmountExceedsCredit(f"Amount {amount} exceeds the record value {value}")

    guarded_update(
        conn,
        old_gold,
        record,
        {
            "status": OldGoldStatus.ADJUSTED.value,
            "adjusted_invoice_id": invoice_id,
            "adjusted_amount": amount,
            "adjusted_at": now(),
        },
        "Old gold record",
    )
    updated = fetch_row(conn, old_gold, record["id"], "Old gold record")
    return ledger.record(conn, ledger.old_gold_entry(updated))


def adjust_old_gold(
    conn: Connection,
    record_id: str,
    invoice_id: str,
    amount,
    expected_version: Optional[int] = None,
) -> OldGoldAdjustOut:
    """
    Net a Pending record against an open invoice of the same customer.

    The amount settles the invoice through its exchange bucket; no cash moves.
    """
    record = fetch_row(conn, old_gold, record_id, "Old gold record")
    check_expected_version(record, expected_version, "Old gold record")
    if record["status"] != OldGoldStatus.PENDING.value:
        logger.warning("Old gold %s is %s, refusing a second adjustment", record_id, record["status"])
        raise AlreadyAdjusted(f"Old gold record is already {record['status']}")

    amount = require_positive(amount)
    value = money(record["total_value"])
    if amount > value:
        raise AmountExceedsCredit(f"Amount {amount} exceeds the record value {value}")

    invoice = fetch_row(conn, invoices, invoice_id, "Invoice")
    if invoice["customer_id"] != record["customer_id"]:
        raise PreconditionFailed("Old gold record and invoice belong to different customers")
    if invoice["cancelled_at"] is not None:
        raise PreconditionFailed(f"Invoice {invoice['invoice_number']} is cancelled")
    due = money(invoice["due_amount"])
    if amount > due:
        logger.warning(
            "Rejected old gold adjustment of %s on %s (due %s)",
            amount, invoice["invoice_number"], due,
        )
        raise AmountExceedsDue(
            f"Amount {amount} exceeds the due amount {due} on Invoice {invoice['invoice_number']}"
        )

    txn_id = mark_adjusted(conn, record, invoice_id, amount)
    updated_invoice = payments.settle_invoice(
        conn,
        invoice,
        amount,
        PaymentDetails(exchange=amount),
        PaymentMode.EXCHANGE.value,
    )
    if amount < value:
        logger.info("Old gold %s: %s of its value forfeited", record_id, value - amount)

    return OldGoldAdjustOut(
        record=load_old_gold(conn, record_id),
        invoice_id=invoice_id,
        invoice_number=updated_invoice["invoice_number"],
        invoice_due_after=money(updated_invoice["due_amount"]),
        invoice_status=updated_invoice["status"],
        transaction_id=txn_id,
    )
