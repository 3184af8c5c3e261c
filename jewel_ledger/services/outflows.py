# jewel_ledger/services/outflows.py
"""
Money leaving the shop: expenses, supplier purchases and supplier payments.

Each document writes exactly one DEBIT entry. A purchase bought fully on
credit (nothing paid) writes none until a supplier payment settles it.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, insert, select
from sqlalchemy.engine import Connection

from jewel_ledger.db.schema import expenses, purchases, supplier_payments
from jewel_ledger.errors import Overpayment, PreconditionFailed, ValidationError
from jewel_ledger.models.common import PaymentMode
from jewel_ledger.models.outflows import ExpenseOut, PurchaseOut, SupplierPaymentOut
from jewel_ledger.services import ledger
from jewel_ledger.services.common import day_bounds, fetch_row, new_id, now
from jewel_ledger.services.pricing import ZERO, money, require_non_negative, require_positive

logger = logging.getLogger(__name__)

OUTFLOW_MODES = frozenset(
    {PaymentMode.CASH, PaymentMode.UPI, PaymentMode.CARD, PaymentMode.BANK, PaymentMode.CHEQUE}
)


def _outflow_mode(mode, allow_credit: bool = False) -> str:
    try:
        mode = PaymentMode(mode)
    except ValueError:
        raise ValidationError(f"unknown payment mode {mode!r}")
    if mode in OUTFLOW_MODES or (allow_credit and mode == PaymentMode.CREDIT):
        return mode.value
    raise ValidationError(f"{mode.value} cannot be used to pay money out")


# ---- Expenses ----

def record_expense(
    conn: Connection,
    category: str,
    amount,
    description: str,
    payment_mode=PaymentMode.CASH,
    spent_on: Optional[datetime] = None,
    performed_by: Optional[str] = None,
):
    if not category or not description:
        raise ValidationError("category and description are required")
    row = {
        "id": new_id(),
        "category": category,
        "amount": require_positive(amount),
        "description": description,
        "payment_mode": _outflow_mode(payment_mode),
        "date": spent_on or now(),
        "created_by": performed_by,
    }
    conn.execute(insert(expenses).values(**row))
    ledger.record(conn, ledger.expense_entry(row))
    logger.info("Expense %s: %s via %s", category, row["amount"], row["payment_mode"])
    return fetch_row(conn, expenses, row["id"], "Expense")


def expense_out(row) -> ExpenseOut:
    return ExpenseOut(
        id=row["id"],
        category=row["category"],
        amount=money(row["amount"]),
        description=row["description"],
        payment_mode=row["payment_mode"],
        date=row["date"],
        created_by=row["created_by"],
    )


def list_expenses(
    conn: Connection,
    start: Optional[date] = None,
    end: Optional[date] = None,
    category: Optional[str] = None,
) -> List[ExpenseOut]:
    stmt = select(expenses)
    lower, upper = day_bounds(start, end)
    if lower is not None:
        stmt = stmt.where(expenses.c.date >= lower)
    if upper is not None:
        stmt = stmt.where(expenses.c.date < upper)
    if category:
        stmt = stmt.where(expenses.c.category == category)
    rows = conn.execute(stmt.order_by(expenses.c.date.desc(), expenses.c.id)).mappings().all()
    return [expense_out(row) for row in rows]


# ---- Purchases ----

def _settled(conn: Connection, purchase) -> Decimal:
    later = conn.execute(
        select(func.coalesce(func.sum(supplier_payments.c.amount), 0)).where(
            supplier_payments.c.purchase_id == purchase["id"]
        )
    ).scalar_one()
    return money(purchase["paid_amount"]) + money(later)


def _row_to_purchase(conn: Connection, row) -> PurchaseOut:
    settled = _settled(conn, row)
    total = money(row["total_amount"])
    return PurchaseOut(
        id=row["id"],
        supplier_name=row["supplier_name"],
        total_amount=total,
        paid_amount=money(row["paid_amount"]),
        settled_amount=settled,
        balance=total - settled,
        payment_mode=row["payment_mode"],
        date=row["date"],
        notes=row["notes"],
        created_by=row["created_by"],
    )


def record_purchase(
    conn: Connection,
    supplier_name: str,
    total_amount,
    paid_amount=ZERO,
    payment_mode=PaymentMode.CASH,
    purchased_on: Optional[datetime] = None,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
):
    if not supplier_name:
        raise ValidationError("supplier name is required")
    total = require_positive(total_amount, "total amount")
    paid = money(require_non_negative(paid_amount, "paid amount"))
    if paid > total:
        raise Overpayment(f"Paid amount {paid} exceeds the purchase total {total}")
    mode = _outflow_mode(payment_mode, allow_credit=(paid == ZERO))

    row = {
        "id": new_id(),
        "supplier_name": supplier_name,
        "total_amount": total,
        "paid_amount": paid,
        "payment_mode": mode,
        "date": purchased_on or now(),
        "notes": notes,
        "created_by": performed_by,
    }
    conn.execute(insert(purchases).values(**row))
    entry = ledger.purchase_entry(row)
    if entry is not None:
        ledger.record(conn, entry)
    logger.info("Purchase from %s: total %s, paid %s", supplier_name, total, paid)
    return fetch_row(conn, purchases, row["id"], "Purchase")


def load_purchase(conn: Connection, purchase_id: str) -> PurchaseOut:
    return _row_to_purchase(conn, fetch_row(conn, purchases, purchase_id, "Purchase"))


def list_purchases(conn: Connection, supplier_name: Optional[str] = None) -> List[PurchaseOut]:
    stmt = select(purchases)
    if supplier_name:
        stmt = stmt.where(purchases.c.supplier_name == supplier_name)
    rows = conn.execute(stmt.order_by(purchases.c.date.desc(), purchases.c.id)).mappings().all()
    return [_row_to_purchase(conn, row) for row in rows]


# ---- Supplier payments ----

def record_supplier_payment(
    conn: Connection,
    supplier_name: str,
    amount,
    payment_mode=PaymentMode.CASH,
    purchase_id: Optional[str] = None,
    reference_number: Optional[str] = None,
    notes: Optional[str] = None,
    paid_on: Optional[datetime] = None,
    performed_by: Optional[str] = None,
):
    """
    Pay a supplier, optionally against one purchase. The purchase row itself
    is never rewritten; its balance is total minus everything paid against it.
    """
    if not supplier_name:
        raise ValidationError("supplier name is required")
    amount = require_positive(amount)
    if purchase_id is not None:
        purchase = fetch_row(conn, purchases, purchase_id, "Purchase")
        if purchase["supplier_name"] != supplier_name:
            raise PreconditionFailed("Purchase belongs to a different supplier")
        balance = money(purchase["total_amount"]) - _settled(conn, purchase)
        if amount > balance:
            logger.warning("Rejected supplier overpayment of %s (balance %s)", amount, balance)
            raise Overpayment(f"Amount {amount} exceeds the purchase balance {balance}")

    row = {
        "id": new_id(),
        "supplier_name": supplier_name,
        "purchase_id": purchase_id,
        "amount": amount,
        "payment_mode": _outflow_mode(payment_mode),
        "reference_number": reference_number,
        "notes": notes,
        "date": paid_on or now(),
        "created_by": performed_by,
    }
    conn.execute(insert(supplier_payments).values(**row))
    ledger.record(conn, ledger.supplier_payment_entry(row))
    logger.info("Paid supplier %s: %s via %s", supplier_name, amount, row["payment_mode"])
    return fetch_row(conn, supplier_payments, row["id"], "Supplier payment")


def supplier_payment_out(row) -> SupplierPaymentOut:
    return SupplierPaymentOut(
        id=row["id"],
        supplier_name=row["supplier_name"],
        purchase_id=row["purchase_id"],
        amount=money(row["amount"]),
        payment_mode=row["payment_mode"],
        reference_number=row["reference_number"],
        notes=row["notes"],
        date=row["date"],
        created_by=row["created_by"],
    )


def list_supplier_payments(conn: Connection, supplier_name: Optional[str] = None) -> List[SupplierPaymentOut]:
    stmt = select(supplier_payments)
    if supplier_name:
        stmt = stmt.where(supplier_payments.c.supplier_name == supplier_name)
    rows = conn.execute(stmt.order_by(supplier_payments.c.date.desc(), supplier_payments.c.id)).mappings().all()
    return [supplier_payment_out(row) for row in rows]
