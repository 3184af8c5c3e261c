# jewel_ledger/services/ledger.py
"""
Append-only Transaction log and its cash-ledger read side.

Every money-moving document (an invoice payment, an order payment, an old-gold
payout or adjustment, a purchase, an expense, a supplier payment) produces
exactly one Transaction, identified by ``{reference.model, reference.id,
category}``. The same entry builders are used by the live write paths and by
the backfill job, so both always agree on category, sign and amount.

The projector only reads Transactions; it never looks at business documents
to work out money flow.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import and_, case, func, insert, select
from sqlalchemy.engine import Connection

from jewel_ledger.db.schema import (
    expenses, invoice_payments, invoices, old_gold, order_payments, orders,
    purchases, supplier_payments, transactions,
)
from jewel_ledger.errors import ValidationError
from jewel_ledger.models.common import (
    OldGoldStatus, OrderPaymentMethod, OrderPaymentType, PaymentMode,
    TransactionCategory, TransactionType,
)
from jewel_ledger.models.ledger import (
    BackfillReport, CashLedgerOut, CashTotals, CategoryTotal, LedgerSide,
    ReferenceOut, TransactionOut,
)
from jewel_ledger.services.common import day_bounds, new_id, now
from jewel_ledger.services.pricing import ZERO, money

logger = logging.getLogger(__name__)


# ---- Source references ----

class SourceModel(str, Enum):
    INVOICE_PAYMENT = "InvoicePayment"
    ORDER_PAYMENT = "OrderPayment"
    OLD_GOLD = "OldGold"
    PURCHASE = "Purchase"
    EXPENSE = "Expense"
    SUPPLIER_PAYMENT = "SupplierPayment"


_CREDIT = frozenset({TransactionType.CREDIT})
_DEBIT = frozenset({TransactionType.DEBIT})

# Which (category, type) pairs each kind of source document may produce.
ALLOWED_ENTRIES: Dict[SourceModel, Dict[TransactionCategory, FrozenSet[TransactionType]]] = {
    SourceModel.INVOICE_PAYMENT: {
        TransactionCategory.SALES: _CREDIT,
        TransactionCategory.CUSTOMER_PAYMENT: _CREDIT,
    },
    SourceModel.ORDER_PAYMENT: {
        TransactionCategory.ORDER_ADVANCE: _CREDIT,
        TransactionCategory.CUSTOMER_PAYMENT: _CREDIT,
        TransactionCategory.SALES: _CREDIT,
    },
    SourceModel.OLD_GOLD: {
        TransactionCategory.OLD_GOLD: frozenset(
            {TransactionType.DEBIT, TransactionType.ADJUSTMENT}
        ),
    },
    SourceModel.PURCHASE: {TransactionCategory.PURCHASE: _DEBIT},
    SourceModel.EXPENSE: {TransactionCategory.EXPENSE: _DEBIT},
    SourceModel.SUPPLIER_PAYMENT: {TransactionCategory.SUPPLIER_PAYMENT: _DEBIT},
}


@dataclass(frozen=True)
class SourceRef:
    model: SourceModel
    id: str

    def __post_init__(self):
        try:
            model = SourceModel(self.model)
        except ValueError:
            raise ValidationError(f"unknown reference model {self.model!r}")
        object.__setattr__(self, "model", model)
        if not self.id:
            raise ValidationError("reference id is required")


@dataclass(frozen=True)
class LedgerEntry:
    type: TransactionType
    category: TransactionCategory
    amount: Decimal
    payment_mode: str
    source: SourceRef
    description: Optional[str] = None
    date: Optional[datetime] = None
    performed_by: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "type", TransactionType(self.type))
        object.__setattr__(self, "category", TransactionCategory(self.category))
        object.__setattr__(self, "amount", money(self.amount))

        allowed = ALLOWED_ENTRIES[self.source.model].get(self.category)
        if allowed is None or self.type not in allowed:
            raise ValidationError(
                f"{self.source.model.value} cannot produce a {self.type.value} {self.category.value} entry"
            )
        if self.amount <= ZERO:
            raise ValidationError("ledger amount must be greater than zero")
        if not self.payment_mode:
            raise ValidationError("ledger payment mode is required")


# ---- Entry builders (shared by live writes and backfill) ----

ORDER_METHOD_MODES: Dict[OrderPaymentMethod, PaymentMode] = {
    OrderPaymentMethod.CASH: PaymentMode.CASH,
    OrderPaymentMethod.UPI: PaymentMode.UPI,
    OrderPaymentMethod.CARD: PaymentMode.CARD,
    OrderPaymentMethod.BANK_TRANSFER: PaymentMode.BANK,
    OrderPaymentMethod.OTHER: PaymentMode.CASH,
}

ORDER_PAYMENT_CATEGORIES: Dict[OrderPaymentType, TransactionCategory] = {
    OrderPaymentType.ADVANCE: TransactionCategory.ORDER_ADVANCE,
    OrderPaymentType.PARTIAL: TransactionCategory.CUSTOMER_PAYMENT,
    OrderPaymentType.FINAL: TransactionCategory.SALES,
}


def invoice_payment_entry(row, label: Optional[str] = None) -> LedgerEntry:
    if row["kind"] == "SALE":
        category = TransactionCategory.SALES
        description = f"Invoice {label}" if label else "Invoice sale"
    else:
        category = TransactionCategory.CUSTOMER_PAYMENT
        description = f"Payment for Invoice {label}" if label else "Invoice payment"
    return LedgerEntry(
        type=TransactionType.CREDIT,
        category=category,
        amount=row["amount"],
        payment_mode=row["payment_mode"],
        source=SourceRef(SourceModel.INVOICE_PAYMENT, row["id"]),
        description=description,
        date=row["created_at"],
        performed_by=row["performed_by"],
    )


def order_payment_entry(row, label: Optional[str] = None) -> LedgerEntry:
    payment_type = OrderPaymentType(row["type"])
    description = {
        OrderPaymentType.ADVANCE: "Advance for Order",
        OrderPaymentType.PARTIAL: "Payment for Order",
        OrderPaymentType.FINAL: "Final Payment for Order",
    }[payment_type]
    return LedgerEntry(
        type=TransactionType.CREDIT,
        category=ORDER_PAYMENT_CATEGORIES[payment_type],
        amount=row["amount"],
        payment_mode=ORDER_METHOD_MODES[OrderPaymentMethod(row["method"])].value,
        source=SourceRef(SourceModel.ORDER_PAYMENT, row["id"]),
        description=f"{description} {label}" if label else description,
        date=row["created_at"],
        performed_by=row["performed_by"],
    )


def old_gold_entry(row) -> Optional[LedgerEntry]:
    status = OldGoldStatus(row["status"])
    source = SourceRef(SourceModel.OLD_GOLD, row["id"])
    if status == OldGoldStatus.PAID_OUT:
        return LedgerEntry(
            type=TransactionType.DEBIT,
            category=TransactionCategory.OLD_GOLD,
            amount=row["total_value"],
            payment_mode=row["payout_mode"] or PaymentMode.CASH.value,
            source=source,
            description=f"Old Gold Buy ({row['weight']}g @ {row['rate']})",
            date=row["created_at"],
            performed_by=row["created_by"],
        )
    if status == OldGoldStatus.ADJUSTED and money(row["adjusted_amount"]) > ZERO:
        return LedgerEntry(
            type=TransactionType.ADJUSTMENT,
            category=TransactionCategory.OLD_GOLD,
            amount=row["adjusted_amount"],
            payment_mode=PaymentMode.EXCHANGE.value,
            source=source,
            description="Old Gold adjusted against invoice",
            date=row["adjusted_at"] or row["created_at"],
            performed_by=row["created_by"],
        )
    return None


def purchase_entry(row) -> Optional[LedgerEntry]:
    if money(row["paid_amount"]) <= ZERO:
        return None
    return LedgerEntry(
        type=TransactionType.DEBIT,
        category=TransactionCategory.PURCHASE,
        amount=row["paid_amount"],
        payment_mode=row["payment_mode"],
        source=SourceRef(SourceModel.PURCHASE, row["id"]),
        description=f"Purchase from {row['supplier_name']}",
        date=row["date"],
        performed_by=row["created_by"],
    )


def expense_entry(row) -> LedgerEntry:
    return LedgerEntry(
        type=TransactionType.DEBIT,
        category=TransactionCategory.EXPENSE,
        amount=row["amount"],
        payment_mode=row["payment_mode"],
        source=SourceRef(SourceModel.EXPENSE, row["id"]),
        description=row["description"],
        date=row["date"],
        performed_by=row["created_by"],
    )


def supplier_payment_entry(row) -> LedgerEntry:
    return LedgerEntry(
        type=TransactionType.DEBIT,
        category=TransactionCategory.SUPPLIER_PAYMENT,
        amount=row["amount"],
        payment_mode=row["payment_mode"],
        source=SourceRef(SourceModel.SUPPLIER_PAYMENT, row["id"]),
        description=f"Payment to {row['supplier_name']}",
        date=row["date"],
        performed_by=row["created_by"],
    )


# ---- Writes ----

def record(conn: Connection, entry: LedgerEntry) -> str:
    """Append one Transaction. The log is never updated or deleted."""
    txn_id = new_id()
    stamp = now()
    conn.execute(
        insert(transactions).values(
            id=txn_id,
            type=entry.type.value,
            category=entry.category.value,
            amount=entry.amount,
            payment_mode=entry.payment_mode,
            description=entry.description,
            ref_model=entry.source.model.value,
            ref_id=entry.source.id,
            date=entry.date or stamp,
            performed_by=entry.performed_by,
            created_at=stamp,
        )
    )
    logger.info(
        "Ledger %s %s %s via %s (%s %s)",
        entry.type.value, entry.category.value, entry.amount, entry.payment_mode,
        entry.source.model.value, entry.source.id,
    )
    return txn_id


def exists(conn: Connection, source: SourceRef, category: TransactionCategory) -> bool:
    stmt = select(func.count()).select_from(transactions).where(
        transactions.c.ref_model == source.model.value,
        transactions.c.ref_id == source.id,
        transactions.c.category == TransactionCategory(category).value,
    )
    return conn.execute(stmt).scalar_one() > 0


def record_once(conn: Connection, entry: LedgerEntry) -> bool:
    """Insert unless the source already has its entry; duplicates are a no-op."""
    if exists(conn, entry.source, entry.category):
        return False
    record(conn, entry)
    return True


# ---- Reads ----

_adjusted_invoices = invoices.alias("adjusted_invoices")


def _transactions_query(start: Optional[date], end: Optional[date], filters: List):
    reference_label = func.coalesce(
        invoices.c.invoice_number,
        orders.c.order_number,
        _adjusted_invoices.c.invoice_number,
    ).label("reference_label")

    joined = (
        transactions
        .outerjoin(
            invoice_payments,
            and_(
                transactions.c.ref_model == SourceModel.INVOICE_PAYMENT.value,
                transactions.c.ref_id == invoice_payments.c.id,
            ),
        )
        .outerjoin(invoices, invoices.c.id == invoice_payments.c.invoice_id)
        .outerjoin(
            order_payments,
            and_(
                transactions.c.ref_model == SourceModel.ORDER_PAYMENT.value,
                transactions.c.ref_id == order_payments.c.id,
            ),
        )
        .outerjoin(orders, orders.c.id == order_payments.c.order_id)
        .outerjoin(
            old_gold,
            and_(
                transactions.c.ref_model == SourceModel.OLD_GOLD.value,
                transactions.c.ref_id == old_gold.c.id,
            ),
        )
        .outerjoin(_adjusted_invoices, _adjusted_invoices.c.id == old_gold.c.adjusted_invoice_id)
    )

    conditions = list(filters)
    lower, upper = day_bounds(start, end)
    if lower is not None:
        conditions.append(transactions.c.date >= lower)
    if upper is not None:
        conditions.append(transactions.c.date < upper)

    stmt = select(transactions, reference_label).select_from(joined)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    return stmt.order_by(
        transactions.c.date.desc(), transactions.c.created_at.desc(), transactions.c.id
    )


def _row_to_transaction(row) -> TransactionOut:
    return TransactionOut(
        id=row["id"],
        type=row["type"],
        category=row["category"],
        amount=money(row["amount"]),
        payment_mode=row["payment_mode"],
        description=row["description"],
        reference=ReferenceOut(model=row["ref_model"], id=row["ref_id"]),
        reference_label=row["reference_label"],
        date=row["date"],
        performed_by=row["performed_by"],
    )


def list_transactions(
    conn: Connection,
    start: Optional[date] = None,
    end: Optional[date] = None,
    type: Optional[TransactionType] = None,
    category: Optional[TransactionCategory] = None,
    payment_mode: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[TransactionOut]:
    filters = []
    if type is not None:
        filters.append(transactions.c.type == TransactionType(type).value)
    if category is not None:
        filters.append(transactions.c.category == TransactionCategory(category).value)
    if payment_mode:
        filters.append(transactions.c.payment_mode == payment_mode)

    stmt = _transactions_query(start, end, filters).limit(limit).offset(offset)
    rows = conn.execute(stmt).mappings().all()
    return [_row_to_transaction(row) for row in rows]


def _side(entries: List[TransactionOut], detail_limit: Optional[int]) -> LedgerSide:
    by_category: Dict[TransactionCategory, Tuple[Decimal, int]] = {}
    total = ZERO
    for entry in entries:
        amount, count = by_category.get(entry.category, (ZERO, 0))
        by_category[entry.category] = (amount + entry.amount, count + 1)
        total += entry.amount

    details = entries if detail_limit is None else entries[:detail_limit]
    return LedgerSide(
        total=money(total),
        by_category=[
            CategoryTotal(category=category, amount=money(amount), count=count)
            for category, (amount, count) in sorted(by_category.items(), key=lambda kv: kv[0].value)
        ],
        details=details,
    )


def project_cash_ledger(
    conn: Connection,
    start: Optional[date] = None,
    end: Optional[date] = None,
    payment_mode: Optional[str] = None,
    detail_limit: Optional[int] = None,
) -> CashLedgerOut:
    """
    Classify every Transaction in the range into inflows (CREDIT), outflows
    (DEBIT) and non-cash adjustments.

    Totals always cover the whole range; ``detail_limit`` only trims the
    per-side detail lists. Read-only.
    """
    filters = []
    if payment_mode:
        filters.append(transactions.c.payment_mode == payment_mode)
    rows = conn.execute(_transactions_query(start, end, filters)).mappings().all()

    inflows: List[TransactionOut] = []
    outflows: List[TransactionOut] = []
    adjustments: List[TransactionOut] = []
    for row in rows:
        entry = _row_to_transaction(row)
        if entry.type == TransactionType.CREDIT:
            inflows.append(entry)
        elif entry.type == TransactionType.DEBIT:
            outflows.append(entry)
        else:
            adjustments.append(entry)

    inflow_side = _side(inflows, detail_limit)
    outflow_side = _side(outflows, detail_limit)
    adjustment_side = _side(adjustments, detail_limit)

    return CashLedgerOut(
        start=start,
        end=end,
        payment_mode=payment_mode,
        totals=CashTotals(
            cash_in=inflow_side.total,
            cash_out=outflow_side.total,
            net_cash=inflow_side.total - outflow_side.total,
            adjustments=adjustment_side.total,
        ),
        inflows=inflow_side,
        outflows=outflow_side,
        adjustments=adjustment_side,
    )


def ledger_net(
    conn: Connection,
    start: Optional[date] = None,
    end: Optional[date] = None,
    payment_mode: Optional[str] = None,
) -> Decimal:
    """Net money movement for the range, aggregated independently in SQL."""
    signed = case(
        (transactions.c.type == TransactionType.CREDIT.value, transactions.c.amount),
        (transactions.c.type == TransactionType.DEBIT.value, -transactions.c.amount),
        else_=0,
    )
    conditions = []
    lower, upper = day_bounds(start, end)
    if lower is not None:
        conditions.append(transactions.c.date >= lower)
    if upper is not None:
        conditions.append(transactions.c.date < upper)
    if payment_mode:
        conditions.append(transactions.c.payment_mode == payment_mode)

    stmt = select(func.coalesce(func.sum(signed), 0))
    if conditions:
        stmt = stmt.where(and_(*conditions))
    return money(conn.execute(stmt).scalar_one())


# ---- Backfill ----

_BACKFILL_SOURCES: Tuple[Tuple[str, object, Callable], ...] = (
    ("invoice_payments", invoice_payments, invoice_payment_entry),
    ("order_payments", order_payments, order_payment_entry),
    ("old_gold", old_gold, old_gold_entry),
    ("purchases", purchases, purchase_entry),
    ("expenses", expenses, expense_entry),
    ("supplier_payments", supplier_payments, supplier_payment_entry),
)

# Payments are described by their parent document's number, as on the live path.
_BACKFILL_LABELS = {
    "invoice_payments": (invoices, invoice_payments.c.invoice_id, invoices.c.invoice_number),
    "order_payments": (orders, order_payments.c.order_id, orders.c.order_number),
}


def _backfill_rows(conn: Connection, name: str, table):
    parent = _BACKFILL_LABELS.get(name)
    if parent is None:
        return conn.execute(select(table).order_by(table.c.id)).mappings().all()
    parent_table, foreign_key, number = parent
    stmt = (
        select(table, number.label("source_label"))
        .select_from(table.join(parent_table, foreign_key == parent_table.c.id))
        .order_by(table.c.id)
    )
    return conn.execute(stmt).mappings().all()


def backfill_transactions(conn: Connection) -> BackfillReport:
    """
    Create the missing Transaction for every pre-existing source document.

    Idempotent: a source that already has its ``{model, id, category}`` entry
    is counted as existing and skipped, so re-running changes nothing.
    """
    scanned: Dict[str, int] = {}
    created: Dict[str, int] = {}
    existing: Dict[str, int] = {}

    for name, table, build in _BACKFILL_SOURCES:
        scanned[name] = created[name] = existing[name] = 0
        for row in _backfill_rows(conn, name, table):
            scanned[name] += 1
            if name in _BACKFILL_LABELS:
                entry = build(row, label=row["source_label"])
            else:
                entry = build(row)
            if entry is None:
                continue
            if record_once(conn, entry):
                created[name] += 1
            else:
                existing[name] += 1

        logger.info(
            "Backfill %-18s scanned=%d created=%d existing=%d",
            name, scanned[name], created[name], existing[name],
        )

    return BackfillReport(scanned=scanned, created=created, existing=existing)
