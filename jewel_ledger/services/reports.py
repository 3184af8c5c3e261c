# jewel_ledger/services/reports.py
"""Read-only reports: dashboard money positions and receivables aging."""

from datetime import date
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import and_, case, func, select
from sqlalchemy.engine import Connection

from jewel_ledger.db.schema import customers, invoice_payments, invoices, transactions
from jewel_ledger.models.common import PaymentMode, TransactionType
from jewel_ledger.models.reports import (
    AGING_BUCKETS, AgingBucket, AgingInvoice, AgingReportOut, DashboardStatsOut, SalesTotal,
)
from jewel_ledger.services import ledger, orders
from jewel_ledger.services.common import day_bounds, today
from jewel_ledger.services.pricing import ZERO, money

ONLINE_MODES = frozenset(
    {PaymentMode.UPI.value, PaymentMode.CARD.value, PaymentMode.BANK.value, PaymentMode.SPLIT.value}
)


def _sales(conn: Connection, start: date, end: date) -> SalesTotal:
    lower, upper = day_bounds(start, end)
    total, count = conn.execute(
        select(func.coalesce(func.sum(invoices.c.total), 0), func.count()).where(
            invoices.c.cancelled_at.is_(None),
            invoices.c.created_at >= lower,
            invoices.c.created_at < upper,
        )
    ).one()
    return SalesTotal(total=money(total), count=count)


def money_positions(conn: Connection) -> Tuple[Decimal, Decimal, Decimal]:
    """
    (cash in shop, bank balance, online money in) from the ledger.

    Split entries are divided using the cash bucket of their invoice payment;
    ADJUSTMENT entries moved no money and are skipped.
    """
    rows = conn.execute(
        select(
            transactions.c.type,
            transactions.c.payment_mode,
            transactions.c.amount,
            invoice_payments.c.cash,
        )
        .select_from(
            transactions.outerjoin(
                invoice_payments,
                and_(
                    transactions.c.ref_model == ledger.SourceModel.INVOICE_PAYMENT.value,
                    transactions.c.ref_id == invoice_payments.c.id,
                ),
            )
        )
        .where(transactions.c.type != TransactionType.ADJUSTMENT.value)
    ).mappings().all()

    cash = ZERO
    bank = ZERO
    online_in = ZERO
    for row in rows:
        amount = money(row["amount"])
        if row["payment_mode"] == PaymentMode.CASH.value:
            cash_part = amount
        elif row["payment_mode"] == PaymentMode.SPLIT.value:
            cash_part = money(row["cash"])
        else:
            cash_part = ZERO
        other_part = amount - cash_part

        if row["type"] == TransactionType.CREDIT.value:
            cash += cash_part
            bank += other_part
            if row["payment_mode"] in ONLINE_MODES:
                online_in += other_part
        else:
            cash -= cash_part
            bank -= other_part
    return cash, bank, online_in


def dashboard_stats(conn: Connection, as_of: Optional[date] = None) -> DashboardStatsOut:
    as_of = as_of or today()
    flows = ledger.project_cash_ledger(conn, detail_limit=0)
    cash, bank, online_in = money_positions(conn)

    pending_dues, customers_with_dues = conn.execute(
        select(
            func.coalesce(func.sum(customers.c.total_due), 0),
            func.coalesce(func.sum(case((customers.c.total_due > 0, 1), else_=0)), 0),
        )
    ).one()

    return DashboardStatsOut(
        as_of=as_of,
        today_sales=_sales(conn, as_of, as_of),
        month_sales=_sales(conn, as_of.replace(day=1), as_of),
        cash_in_shop=cash,
        bank_balance=bank,
        online_payments_in=online_in,
        money_source={c.category.value: c.amount for c in flows.inflows.by_category},
        money_usage={c.category.value: c.amount for c in flows.outflows.by_category},
        old_gold_adjusted=flows.totals.adjustments,
        pending_dues=money(pending_dues),
        customers_with_dues=customers_with_dues or 0,
        orders=orders.order_metrics(conn, as_of),
    )


def _bucket_for(days: int) -> str:
    if days <= 30:
        return "0-30"
    if days <= 60:
        return "31-60"
    if days <= 90:
        return "61-90"
    return "90+"


def aging_report(conn: Connection, as_of: Optional[date] = None) -> AgingReportOut:
    """Open invoice dues bucketed by age in days since the invoice was raised."""
    as_of = as_of or today()
    rows = conn.execute(
        select(
            invoices.c.id,
            invoices.c.invoice_number,
            invoices.c.customer_id,
            invoices.c.due_amount,
            invoices.c.created_at,
            customers.c.name.label("customer_name"),
            customers.c.phone.label("customer_phone"),
        )
        .select_from(invoices.join(customers))
        .where(invoices.c.cancelled_at.is_(None), invoices.c.due_amount > 0)
        .order_by(invoices.c.created_at, invoices.c.invoice_number)
    ).mappings().all()

    grouped = {label: [] for label in AGING_BUCKETS}
    for row in rows:
        days = max((as_of - row["created_at"].date()).days, 0)
        grouped[_bucket_for(days)].append(
            AgingInvoice(
                invoice_id=row["id"],
                invoice_number=row["invoice_number"],
                customer_id=row["customer_id"],
                customer_name=row["customer_name"],
                customer_phone=row["customer_phone"],
                due_amount=money(row["due_amount"]),
                days=days,
            )
        )

    buckets = [
        AgingBucket(
            label=label,
            total=money(sum((inv.due_amount for inv in grouped[label]), ZERO)),
            invoices=grouped[label],
        )
        for label in AGING_BUCKETS
    ]
    return AgingReportOut(
        as_of=as_of,
        buckets=buckets,
        total_due=money(sum((bucket.total for bucket in buckets), ZERO)),
    )
