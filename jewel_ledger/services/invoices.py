# jewel_ledger/services/invoices.py
"""
Invoice creation, cancellation and reads.

Everything in ``create_invoice`` happens inside the caller's transaction:
stock, exchange records, the invoice itself, the payment collected at the
counter and the customer aggregates either all land or none do.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, insert, select, true
from sqlalchemy.engine import Connection

from jewel_ledger import config
from jewel_ledger.db.schema import customers, invoice_items, invoice_payments, invoices, old_gold
from jewel_ledger.errors import (
    NotFound, Overpayment, PreconditionFailed, ValidationError,
)
from jewel_ledger.models.common import (
    GoldRateSnapshot, OldGoldStatus, PaymentDetails, PaymentMode,
)
from jewel_ledger.models.invoices import (
    ExchangeItemIn, InvoiceItemIn, InvoiceItemOut, InvoiceListResponse, InvoiceOut,
    InvoicePaymentOut, InvoiceSummaryOut,
)
from jewel_ledger.services import catalog, exchange, payments
from jewel_ledger.services import customers as customer_service
from jewel_ledger.services.common import (
    check_expected_version, day_bounds, fetch_row, guarded_update, new_id, next_number, now,
)
from jewel_ledger.services.pricing import (
    ZERO, DocumentTotals, document_total, money, old_gold_value, price_line,
)
from jewel_ledger.services.status import derive_invoice_status

logger = logging.getLogger(__name__)


def _as_model(model, value):
    return value if isinstance(value, model) else model.model_validate(value)


# ---- Low-level writers (shared with order delivery) ----

def insert_invoice(
    conn: Connection,
    customer_id: str,
    totals: DocumentTotals,
    paid_amount: Decimal,
    payment_mode: str,
    buckets: PaymentDetails,
    rates: GoldRateSnapshot,
    order_id: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[str] = None,
):
    if paid_amount > totals.total:
        raise Overpayment(f"Paid amount {paid_amount} exceeds the invoice total {totals.total}")
    due = totals.total - paid_amount

    invoice_id = new_id()
    conn.execute(
        insert(invoices).values(
            id=invoice_id,
            invoice_number=next_number(conn, "invoice", config.INVOICE_PREFIX),
            customer_id=customer_id,
            order_id=order_id,
            subtotal=totals.subtotal,
            gst=totals.gst,
            discount=totals.discount,
            exchange_amount=totals.exchange_amount,
            total=totals.total,
            paid_amount=paid_amount,
            due_amount=due,
            payment_mode=payment_mode,
            paid_cash=money(buckets.cash),
            paid_upi=money(buckets.upi),
            paid_card=money(buckets.card),
            paid_bank=money(buckets.bank),
            paid_exchange=money(buckets.exchange),
            status=derive_invoice_status(due, totals.total).value,
            rate_24k=rates.rate24K,
            rate_22k=rates.rate22K,
            rate_18k=rates.rate18K,
            notes=notes,
            created_by=created_by,
            created_at=now(),
            version=1,
        )
    )
    return fetch_row(conn, invoices, invoice_id, "Invoice")


def insert_invoice_items(conn: Connection, invoice_id: str, lines: Sequence[dict]) -> None:
    for line_no, line in enumerate(lines, start=1):
        conn.execute(
            insert(invoice_items).values(
                id=new_id(),
                invoice_id=invoice_id,
                line_no=line_no,
                **line,
            )
        )


# ---- Create ----

def _price_items(conn: Connection, items: Iterable[InvoiceItemIn]):
    amounts = []
    lines = []
    for item in items:
        if item.quantity < 1:
            raise ValidationError("quantity must be at least 1")
        line = price_line(
            rate=item.rate,
            weight=item.weight,
            making_charge=item.making_charge,
            wastage=item.wastage,
            discount=item.discount,
            old_gold_adjustment=item.old_gold_adjustment,
            gst=item.gst,
        )
        purchase_rate = ZERO
        description = item.description
        if item.product_id is not None:
            product = catalog.get_stock(conn, item.product_id)
            purchase_rate = money(product["purchase_price"])
            description = description or product["name"]
        amounts.append(line)
        lines.append(
            {
                "product_id": item.product_id,
                "description": description,
                "quantity": item.quantity,
                "weight": item.weight,
                "rate": money(item.rate),
                "purchase_rate": purchase_rate,
                "making_charge": money(item.making_charge),
                "wastage": money(item.wastage),
                "discount": money(item.discount),
                "old_gold_adjustment": money(item.old_gold_adjustment),
                "gst": line.gst,
                "subtotal": line.subtotal,
                "line_total": line.line_total,
                "details": item.details,
            }
        )
    return amounts, lines


def _exchange_values(exchange_items: Iterable[ExchangeItemIn]) -> List[Decimal]:
    values = []
    for item in exchange_items:
        if item.amount is not None:
            value = money(item.amount)
        else:
            value = old_gold_value(item.weight, item.rate, item.purity)
        if value <= ZERO:
            raise ValidationError("exchange item value must be greater than zero")
        values.append(value)
    return values


def _rate_snapshot(conn: Connection, quoted: Optional[GoldRateSnapshot]) -> GoldRateSnapshot:
    """The recorded feed wins; quoted rates only fill purities never recorded."""
    feed = catalog.current_rates(conn)
    if quoted is None:
        return feed
    quoted = _as_model(GoldRateSnapshot, quoted)
    merged = {}
    for field in ("rate24K", "rate22K", "rate18K"):
        value = getattr(feed, field)
        merged[field] = value if value is not None else getattr(quoted, field)
    if merged != feed.model_dump():
        logger.info("Invoice rate snapshot took counter-quoted rates for purities missing from the feed")
    return GoldRateSnapshot(**merged)


def create_invoice(
    conn: Connection,
    customer_id: str,
    items,
    discount=ZERO,
    exchange_items=(),
    exchange_record_ids=(),
    payment_mode=PaymentMode.CASH,
    paid_amount=None,
    payment_details: Optional[PaymentDetails] = None,
    gold_rate: Optional[GoldRateSnapshot] = None,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
):
    """
    Bill a customer.

    total = sum(line totals) - discount - exchange, where exchange is the
    counter-valued old metal in ``exchange_items`` plus any Pending records
    in ``exchange_record_ids`` (each consumed for at most what is left).
    A raw total below zero is rejected rather than clamped.
    """
    items = [_as_model(InvoiceItemIn, item) for item in items]
    exchange_items = [_as_model(ExchangeItemIn, item) for item in exchange_items]
    if not items:
        raise ValidationError("an invoice needs at least one item")
    customer_service.find_customer(conn, customer_id)

    amounts, lines = _price_items(conn, items)
    inline_values = _exchange_values(exchange_items)
    inline_total = sum(inline_values, ZERO)

    totals = document_total(amounts, discount, inline_total)
    if totals.shortfall > ZERO:
        raise ValidationError(
            f"discount and exchange exceed the bill by {totals.shortfall}; the total cannot go negative"
        )

    # Pending credit of this customer, consumed in the order given
    record_ids = list(dict.fromkeys(exchange_record_ids))
    records = []
    remaining = totals.total
    for record_id in record_ids:
        record = fetch_row(conn, old_gold, record_id, "Old gold record")
        if record["customer_id"] != customer_id:
            raise PreconditionFailed("Old gold record belongs to a different customer")
        if record["status"] != OldGoldStatus.PENDING.value:
            raise PreconditionFailed(f"Old gold record is already {record['status']}")
        portion = min(money(record["total_value"]), remaining)
        if portion <= ZERO:
            raise ValidationError("nothing left on the bill to net this old gold record against")
        records.append((record, portion))
        remaining -= portion
    if records:
        totals = document_total(
            amounts, discount, inline_total + sum((p for _, p in records), ZERO)
        )

    paid, buckets = payments.resolve_breakdown(paid_amount, payment_mode, payment_details)
    mode = PaymentMode(payment_mode)
    if paid > totals.total:
        logger.warning("Rejected invoice: paid %s exceeds total %s", paid, totals.total)
        raise Overpayment(f"Paid amount {paid} exceeds the invoice total {totals.total}")
    if paid == ZERO and totals.total > ZERO and mode != PaymentMode.CREDIT:
        raise ValidationError("enter the amount received or bill the sale on Credit")
    due = totals.total - paid
    if due > ZERO:
        customer_service.ensure_credit_available(conn, customer_id, due)

    rates = _rate_snapshot(conn, gold_rate)

    for item in items:
        if item.product_id is not None:
            catalog.decrement_stock(conn, item.product_id, quantity=item.quantity, weight=item.weight)

    invoice = insert_invoice(
        conn,
        customer_id,
        totals,
        paid,
        mode.value,
        buckets,
        rates,
        notes=notes,
        created_by=performed_by,
    )
    insert_invoice_items(conn, invoice["id"], lines)

    for item, value in zip(exchange_items, inline_values):
        record = exchange.insert_record(
            conn,
            customer_id,
            item.weight,
            item.purity,
            item.rate,
            total_value=value,
            category=item.category,
            description=item.description or "Exchange against invoice",
            created_by=performed_by,
        )
        exchange.mark_adjusted(conn, record, invoice["id"], value)
    for record, portion in records:
        exchange.mark_adjusted(conn, record, invoice["id"], portion)

    if paid > ZERO:
        payments.record_invoice_payment(conn, invoice, "SALE", paid, mode.value, buckets, performed_by)

    customer_service.adjust_aggregates(conn, customer_id, due_delta=due, purchases_delta=totals.total)

    logger.info(
        "Created %s for customer %s: total %s, paid %s, due %s",
        invoice["invoice_number"], customer_id, totals.total, paid, due,
    )
    return invoice


# ---- Cancel ----

def cancel_invoice(conn: Connection, invoice_id: str, expected_version: Optional[int] = None):
    """
    Void an invoice nobody has paid anything on. Stock goes back to the
    catalog and the customer aggregates drop; no money moved, so no ledger entry.
    """
    invoice = fetch_row(conn, invoices, invoice_id, "Invoice")
    label = f"Invoice {invoice['invoice_number']}"
    check_expected_version(invoice, expected_version, label)

    if invoice["cancelled_at"] is not None:
        raise PreconditionFailed(f"{label} is already cancelled")
    if money(invoice["paid_amount"]) > ZERO:
        raise PreconditionFailed(f"{label} has settlements and cannot be cancelled")
    if money(invoice["exchange_amount"]) > ZERO:
        raise PreconditionFailed(f"{label} netted old gold and cannot be cancelled")
    if invoice["order_id"] is not None:
        raise PreconditionFailed(f"{label} was generated by an order delivery and cannot be cancelled")

    items = conn.execute(
        select(invoice_items).where(invoice_items.c.invoice_id == invoice_id)
    ).mappings().all()
    for item in items:
        if item["product_id"] is not None:
            catalog.increment_stock(conn, item["product_id"], quantity=item["quantity"], weight=item["weight"])

    guarded_update(conn, invoices, invoice, {"cancelled_at": now()}, label)
    customer_service.adjust_aggregates(
        conn,
        invoice["customer_id"],
        due_delta=-money(invoice["due_amount"]),
        purchases_delta=-money(invoice["total"]),
    )
    logger.info("Cancelled %s", label)
    return fetch_row(conn, invoices, invoice_id, "Invoice")


# ---- Reads ----

def _row_to_item(row) -> InvoiceItemOut:
    return InvoiceItemOut(
        id=row["id"],
        line_no=row["line_no"],
        product_id=row["product_id"],
        description=row["description"],
        quantity=row["quantity"],
        weight=row["weight"],
        rate=money(row["rate"]),
        purchase_rate=money(row["purchase_rate"]),
        making_charge=money(row["making_charge"]),
        wastage=money(row["wastage"]),
        discount=money(row["discount"]),
        old_gold_adjustment=money(row["old_gold_adjustment"]),
        gst=money(row["gst"]),
        subtotal=money(row["subtotal"]),
        line_total=money(row["line_total"]),
        details=row["details"],
    )


def _row_to_payment(row) -> InvoicePaymentOut:
    return InvoicePaymentOut(
        id=row["id"],
        kind=row["kind"],
        amount=money(row["amount"]),
        payment_mode=row["payment_mode"],
        details=PaymentDetails(
            cash=money(row["cash"]),
            upi=money(row["upi"]),
            card=money(row["card"]),
            bank=money(row["bank"]),
        ),
        customer_payment_id=row["customer_payment_id"],
        performed_by=row["performed_by"],
        created_at=row["created_at"],
    )


def payment_details_of(row) -> PaymentDetails:
    return PaymentDetails(
        cash=money(row["paid_cash"]),
        upi=money(row["paid_upi"]),
        card=money(row["paid_card"]),
        bank=money(row["paid_bank"]),
        exchange=money(row["paid_exchange"]),
    )


def load_invoice(conn: Connection, invoice_id: str) -> InvoiceOut:
    row = conn.execute(
        select(invoices, customers.c.name.label("customer_name"))
        .select_from(invoices.join(customers))
        .where(invoices.c.id == invoice_id)
    ).mappings().first()
    if row is None:
        raise NotFound("Invoice not found")

    items = conn.execute(
        select(invoice_items)
        .where(invoice_items.c.invoice_id == invoice_id)
        .order_by(invoice_items.c.line_no)
    ).mappings().all()
    payment_rows = conn.execute(
        select(invoice_payments)
        .where(invoice_payments.c.invoice_id == invoice_id)
        .order_by(invoice_payments.c.created_at, invoice_payments.c.id)
    ).mappings().all()
    record_ids = conn.execute(
        select(old_gold.c.id)
        .where(old_gold.c.adjusted_invoice_id == invoice_id)
        .order_by(old_gold.c.created_at, old_gold.c.id)
    ).scalars().all()

    return InvoiceOut(
        id=row["id"],
        invoice_number=row["invoice_number"],
        customer_id=row["customer_id"],
        customer_name=row["customer_name"],
        order_id=row["order_id"],
        items=[_row_to_item(item) for item in items],
        subtotal=money(row["subtotal"]),
        gst=money(row["gst"]),
        discount=money(row["discount"]),
        exchange_amount=money(row["exchange_amount"]),
        total=money(row["total"]),
        paid_amount=money(row["paid_amount"]),
        due_amount=money(row["due_amount"]),
        payment_mode=row["payment_mode"],
        payment_details=payment_details_of(row),
        status=row["status"],
        cancelled=row["cancelled_at"] is not None,
        gold_rate=GoldRateSnapshot(
            rate24K=row["rate_24k"],
            rate22K=row["rate_22k"],
            rate18K=row["rate_18k"],
        ),
        exchange_record_ids=list(record_ids),
        payments=[_row_to_payment(p) for p in payment_rows],
        notes=row["notes"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        version=row["version"],
    )


def list_invoices(
    conn: Connection,
    customer_id: Optional[str] = None,
    status: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    include_cancelled: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> InvoiceListResponse:
    conditions = []
    if customer_id is not None:
        conditions.append(invoices.c.customer_id == customer_id)
    if status is not None:
        conditions.append(invoices.c.status == status)
    if not include_cancelled:
        conditions.append(invoices.c.cancelled_at.is_(None))
    lower, upper = day_bounds(start, end)
    if lower is not None:
        conditions.append(invoices.c.created_at >= lower)
    if upper is not None:
        conditions.append(invoices.c.created_at < upper)
    where = and_(*conditions) if conditions else true()

    total = conn.execute(select(func.count()).select_from(invoices).where(where)).scalar_one()
    rows = conn.execute(
        select(invoices, customers.c.name.label("customer_name"))
        .select_from(invoices.join(customers))
        .where(where)
        .order_by(invoices.c.created_at.desc(), invoices.c.invoice_number.desc())
        .limit(limit)
        .offset(offset)
    ).mappings().all()

    return InvoiceListResponse(
        items=[
            InvoiceSummaryOut(
                id=row["id"],
                invoice_number=row["invoice_number"],
                customer_id=row["customer_id"],
                customer_name=row["customer_name"],
                total=money(row["total"]),
                paid_amount=money(row["paid_amount"]),
                due_amount=money(row["due_amount"]),
                payment_mode=row["payment_mode"],
                status=row["status"],
                cancelled=row["cancelled_at"] is not None,
                created_at=row["created_at"],
            )
            for row in rows
        ],
        total=total,
        limit=limit,
        offset=offset,
    )
