# jewel_ledger/services/orders.py
"""
Custom and catalog orders: creation with advance, payments, line edits,
manual status changes and delivery.

Delivery is the only way to DELIVERED. It decrements stock for every
catalog line, writes exactly one invoice carrying the money already
collected, and flips the order, all in the caller's transaction.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.engine import Connection

from jewel_ledger import config
from jewel_ledger.db.schema import invoices, order_items, order_payments, orders
from jewel_ledger.errors import (
    AlreadyDelivered, InvalidTransition, Overpayment, PreconditionFailed, ValidationError,
)
from jewel_ledger.models.common import (
    OrderPaymentMethod, OrderPaymentType, OrderStatus, PaymentDetails, PaymentMode,
)
from jewel_ledger.models.orders import (
    DeliveryAlertOut, OrderItemIn, OrderItemOut, OrderMetricsOut, OrderOut,
    OrderPaymentOut, OrderSummaryOut,
)
from jewel_ledger.services import catalog
from jewel_ledger.services import customers as customer_service
from jewel_ledger.services import invoices as invoice_service
from jewel_ledger.services import ledger
from jewel_ledger.services.common import (
    check_expected_version, day_bounds, fetch_row, guarded_update, new_id, next_number, now, today,
)
from jewel_ledger.services.payments import BUCKET_FOR_MODE, mode_of
from jewel_ledger.services.pricing import (
    ZERO, DocumentTotals, money, order_line_total, require_positive, weight_value,
)
from jewel_ledger.services.status import (
    TERMINAL_ORDER_STATES, derive_order_payment_status, ensure_transition, is_terminal,
    order_status_after_payment,
)

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = (
    "name", "quantity", "price", "weight", "making_charge", "wastage", "discount",
    "target_weight", "size", "item_type", "special_instructions", "design_image",
)

_CUSTOM_DETAIL_FIELDS = (
    "target_weight", "size", "item_type", "special_instructions", "design_image",
)


def _ensure_open(order) -> None:
    status = OrderStatus(order["order_status"])
    if status == OrderStatus.DELIVERED:
        raise AlreadyDelivered(
            f"Order {order['order_number']} is already delivered", invoice_id=order["invoice_id"]
        )
    if is_terminal(status):
        raise InvalidTransition(f"Order {order['order_number']} is {status.value}")


# ---- Create ----

def _require_piece_weight(product, weight: Decimal) -> None:
    """Weight-managed stock is drawn by weight, so the line must carry one."""
    if product["is_weight_managed"] and weight <= ZERO:
        raise ValidationError(f"weight is required for weight-managed product {product['sku']}")


def _build_item(conn: Connection, item: OrderItemIn) -> dict:
    line_total = order_line_total(
        item.price, item.quantity, item.making_charge, item.wastage, item.discount
    )
    values = {
        "product_id": None,
        "is_custom": item.is_custom,
        "name": item.name,
        "quantity": item.quantity,
        "price": money(item.price),
        "weight": weight_value(item.weight),
        "sku": None,
        "purity": item.purity,
        "making_charge": money(item.making_charge),
        "wastage": money(item.wastage),
        "discount": money(item.discount),
        "line_total": line_total,
    }
    for field in _CUSTOM_DETAIL_FIELDS:
        values[field] = getattr(item, field)

    if item.is_custom:
        if not item.name:
            raise ValidationError("a custom item needs a name")
        return values

    if item.product_id is None:
        raise ValidationError(
            f"item {item.name or 'Unknown'} must be custom or reference a catalog product"
        )
    product = catalog.get_stock(conn, item.product_id)
    _require_piece_weight(product, values["weight"])
    values.update(
        product_id=product["id"],
        name=item.name or product["name"],
        sku=product["sku"],
        purity=item.purity or product["purity"],
    )
    return values


def _insert_items(conn: Connection, order_id: str, items: List[dict]) -> None:
    for line_no, values in enumerate(items, start=1):
        conn.execute(
            insert(order_items).values(id=new_id(), order_id=order_id, line_no=line_no, **values)
        )


def _record_payment(
    conn: Connection,
    order,
    amount: Decimal,
    method: OrderPaymentMethod,
    payment_type: OrderPaymentType,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
) -> str:
    row = {
        "id": new_id(),
        "order_id": order["id"],
        "amount": amount,
        "method": OrderPaymentMethod(method).value,
        "type": OrderPaymentType(payment_type).value,
        "notes": notes,
        "performed_by": performed_by,
        "created_at": now(),
    }
    conn.execute(insert(order_payments).values(**row))
    return ledger.record(conn, ledger.order_payment_entry(row, label=order["order_number"]))


def create_order(
    conn: Connection,
    customer_id: str,
    items,
    expected_delivery_date: date,
    advance_amount=ZERO,
    payment_method=OrderPaymentMethod.CASH,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
):
    items = [item if isinstance(item, OrderItemIn) else OrderItemIn.model_validate(item) for item in items]
    if not items:
        raise ValidationError("an order needs at least one item")
    if expected_delivery_date is None:
        raise ValidationError("expected delivery date is required")
    customer = customer_service.find_customer(conn, customer_id)

    lines = [_build_item(conn, item) for item in items]
    total = money(sum((line["line_total"] for line in lines), ZERO))
    advance = money(advance_amount)
    if advance < ZERO:
        raise ValidationError("advance cannot be negative")
    if advance > total:
        raise Overpayment(f"Advance {advance} exceeds the order total {total}")

    order_id = new_id()
    stamp = now()
    status = order_status_after_payment(OrderStatus.PENDING, advance)
    conn.execute(
        insert(orders).values(
            id=order_id,
            order_number=next_number(conn, "order", config.ORDER_PREFIX),
            customer_id=customer_id,
            customer_name=customer["name"],
            customer_phone=customer["phone"],
            customer_email=customer["email"],
            total_amount=total,
            advance_amount=advance,
            paid_amount=advance,
            remaining_amount=total - advance,
            order_status=status.value,
            expected_delivery_date=expected_delivery_date,
            notes=notes,
            version=1,
            created_at=stamp,
            updated_at=stamp,
        )
    )
    _insert_items(conn, order_id, lines)

    order = fetch_row(conn, orders, order_id, "Order")
    if advance > ZERO:
        _record_payment(
            conn, order, advance, payment_method, OrderPaymentType.ADVANCE, performed_by=performed_by
        )

    logger.info(
        "Created %s for %s: total %s, advance %s", order["order_number"], customer["name"], total, advance
    )
    return order


# ---- Payments ----

def _apply_payment(
    conn: Connection,
    order,
    amount,
    method,
    payment_type: OrderPaymentType,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
    expected_version: Optional[int] = None,
):
    label = f"Order {order['order_number']}"
    _ensure_open(order)
    check_expected_version(order, expected_version, label)

    amount = require_positive(amount)
    try:
        method = OrderPaymentMethod(method)
    except ValueError:
        raise ValidationError(f"unknown payment method {method!r}")
    remaining = money(order["remaining_amount"])
    if amount > remaining:
        logger.warning("Rejected overpayment of %s on %s (remaining %s)", amount, label, remaining)
        raise Overpayment(f"Amount {amount} exceeds the remaining amount {remaining} on {label}")

    paid = money(order["paid_amount"]) + amount
    status = order_status_after_payment(OrderStatus(order["order_status"]), paid)
    guarded_update(
        conn,
        orders,
        order,
        {
            "paid_amount": paid,
            "remaining_amount": remaining - amount,
            "order_status": status.value,
            "updated_at": now(),
        },
        label,
    )
    _record_payment(conn, order, amount, method, payment_type, notes, performed_by)
    logger.info("%s received %s via %s; remaining %s", label, amount, method.value, remaining - amount)
    return fetch_row(conn, orders, order["id"], "Order")


def add_order_payment(
    conn: Connection,
    order_id: str,
    amount,
    method=OrderPaymentMethod.CASH,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
    expected_version: Optional[int] = None,
):
    order = fetch_row(conn, orders, order_id, "Order")
    return _apply_payment(
        conn, order, amount, method, OrderPaymentType.PARTIAL, notes, performed_by, expected_version
    )


# ---- Line edits ----

def _order_items(conn: Connection, order_id: str):
    return conn.execute(
        select(order_items).where(order_items.c.order_id == order_id).order_by(order_items.c.line_no)
    ).mappings().all()


def _retotal(conn: Connection, order, line_totals: List[Decimal], label: str):
    total = money(sum(line_totals, ZERO))
    paid = money(order["paid_amount"])
    if total < paid:
        logger.warning("Rejected edit on %s: new total %s below paid %s", label, total, paid)
        raise Overpayment(f"New total {total} would be below the {paid} already paid on {label}")
    guarded_update(
        conn,
        orders,
        order,
        {"total_amount": total, "remaining_amount": total - paid, "updated_at": now()},
        label,
    )


def patch_order_item(
    conn: Connection,
    order_id: str,
    item_id: str,
    changes: Dict,
    expected_version: Optional[int] = None,
):
    """Edit one line of an open order; the total and remaining follow."""
    order = fetch_row(conn, orders, order_id, "Order")
    label = f"Order {order['order_number']}"
    _ensure_open(order)
    check_expected_version(order, expected_version, label)

    items = _order_items(conn, order_id)
    target = next((item for item in items if item["id"] == item_id), None)
    if target is None:
        raise ValidationError(f"item {item_id} is not part of {label}")

    merged = dict(target)
    for field in _PATCHABLE_FIELDS:
        if changes.get(field) is not None:
            merged[field] = changes[field]
    line_total = order_line_total(
        merged["price"], merged["quantity"], merged["making_charge"], merged["wastage"], merged["discount"]
    )
    values = {
        "name": merged["name"],
        "quantity": int(merged["quantity"]),
        "price": money(merged["price"]),
        "weight": weight_value(merged["weight"]),
        "making_charge": money(merged["making_charge"]),
        "wastage": money(merged["wastage"]),
        "discount": money(merged["discount"]),
        "line_total": line_total,
    }
    for field in _CUSTOM_DETAIL_FIELDS:
        values[field] = merged[field]
    if target["product_id"] is not None:
        _require_piece_weight(catalog.get_stock(conn, target["product_id"]), values["weight"])

    line_totals = [line_total if item["id"] == item_id else money(item["line_total"]) for item in items]
    _retotal(conn, order, line_totals, label)
    conn.execute(update(order_items).where(order_items.c.id == item_id).values(**values))
    logger.info("%s item %s updated; line total %s", label, item_id, line_total)
    return fetch_row(conn, orders, order_id, "Order")


def delete_order_item(conn: Connection, order_id: str, item_id: str, expected_version: Optional[int] = None):
    order = fetch_row(conn, orders, order_id, "Order")
    label = f"Order {order['order_number']}"
    _ensure_open(order)
    check_expected_version(order, expected_version, label)

    items = _order_items(conn, order_id)
    if not any(item["id"] == item_id for item in items):
        raise ValidationError(f"item {item_id} is not part of {label}")
    if len(items) == 1:
        raise PreconditionFailed(f"Cannot remove the last item of {label}; cancel the order instead")

    _retotal(conn, order, [money(item["line_total"]) for item in items if item["id"] != item_id], label)
    conn.execute(delete(order_items).where(order_items.c.id == item_id))
    logger.info("%s item %s removed", label, item_id)
    return fetch_row(conn, orders, order_id, "Order")


# ---- Status ----

def update_order_status(conn: Connection, order_id: str, status, expected_version: Optional[int] = None):
    order = fetch_row(conn, orders, order_id, "Order")
    label = f"Order {order['order_number']}"
    check_expected_version(order, expected_version, label)

    target = OrderStatus(status)
    if target == OrderStatus.DELIVERED:
        raise InvalidTransition(f"{label} can only become DELIVERED through delivery")
    current = OrderStatus(order["order_status"])
    if current == OrderStatus.DELIVERED:
        raise AlreadyDelivered(f"{label} is already delivered", invoice_id=order["invoice_id"])
    ensure_transition(current, target)

    guarded_update(conn, orders, order, {"order_status": target.value, "updated_at": now()}, label)
    if target == OrderStatus.CANCELLED and money(order["paid_amount"]) > ZERO:
        logger.warning("%s cancelled with %s collected; settle the refund by hand", label, order["paid_amount"])
    logger.info("%s moved %s -> %s", label, current.value, target.value)
    return fetch_row(conn, orders, order_id, "Order")


# ---- Delivery ----

def _collected_buckets(conn: Connection, order_id: str) -> PaymentDetails:
    totals: Dict[str, Decimal] = {}
    rows = conn.execute(
        select(order_payments.c.method, func.sum(order_payments.c.amount))
        .where(order_payments.c.order_id == order_id)
        .group_by(order_payments.c.method)
    ).all()
    for method, amount in rows:
        bucket = BUCKET_FOR_MODE[ledger.ORDER_METHOD_MODES[OrderPaymentMethod(method)]]
        totals[bucket] = totals.get(bucket, ZERO) + money(amount)
    return PaymentDetails(**totals)


def _invoice_line(item) -> dict:
    """
    Mirror an order line onto the invoice. Order lines are priced per piece,
    so here ``subtotal = rate * quantity + making + wastage - discount`` and
    ``weight`` is the total metal drawn from stock.
    """
    details = {
        "is_custom": item["is_custom"],
        "sku": item["sku"],
        "purity": item["purity"],
        "priced_per": "piece",
    }
    for field in _CUSTOM_DETAIL_FIELDS:
        if item[field] is not None:
            details[field] = item[field]
    return {
        "product_id": item["product_id"],
        "description": item["name"],
        "quantity": item["quantity"],
        "weight": weight_value(item["weight"]) * item["quantity"],
        "rate": money(item["price"]),
        "purchase_rate": ZERO,
        "making_charge": money(item["making_charge"]),
        "wastage": money(item["wastage"]),
        "discount": money(item["discount"]),
        "old_gold_adjustment": ZERO,
        "gst": ZERO,
        "subtotal": money(item["line_total"]),
        "line_total": money(item["line_total"]),
        "details": details,
    }


def deliver_order(
    conn: Connection,
    order_id: str,
    final_payment: Optional[Tuple[Decimal, OrderPaymentMethod]] = None,
    performed_by: Optional[str] = None,
    expected_version: Optional[int] = None,
):
    """
    Hand over an order: optional final payment, stock out, one invoice.

    Returns (order row, invoice row). A second call raises AlreadyDelivered
    carrying the existing invoice id. Any failure leaves order, stock and
    invoices untouched because it all runs in one transaction.
    """
    order = fetch_row(conn, orders, order_id, "Order")
    label = f"Order {order['order_number']}"
    _ensure_open(order)
    check_expected_version(order, expected_version, label)

    existing = conn.execute(select(invoices.c.id).where(invoices.c.order_id == order_id)).scalar()
    if existing is not None:
        raise AlreadyDelivered(f"{label} already produced an invoice", invoice_id=existing)

    if final_payment is not None:
        amount, method = final_payment
        if money(amount) > ZERO:
            order = _apply_payment(
                conn, order, amount, method, OrderPaymentType.FINAL, performed_by=performed_by
            )

    items = _order_items(conn, order_id)
    lines = []
    for item in items:
        line = _invoice_line(item)
        if item["product_id"] is not None:
            product = catalog.get_stock(conn, item["product_id"])
            line["purchase_rate"] = money(product["purchase_price"])
            catalog.decrement_stock(
                conn, item["product_id"], quantity=item["quantity"], weight=line["weight"]
            )
        lines.append(line)

    total = money(order["total_amount"])
    paid = money(order["paid_amount"])
    remaining = money(order["remaining_amount"])
    if remaining > ZERO:
        customer_service.ensure_credit_available(conn, order["customer_id"], remaining)
    buckets = _collected_buckets(conn, order_id)
    mode = PaymentMode.CREDIT if paid == ZERO else mode_of(buckets)

    invoice = invoice_service.insert_invoice(
        conn,
        order["customer_id"],
        DocumentTotals(
            subtotal=total, gst=ZERO, discount=ZERO, exchange_amount=ZERO, total=total, shortfall=ZERO
        ),
        paid,
        mode.value,
        buckets,
        catalog.current_rates(conn),
        order_id=order_id,
        notes=f"Delivered against {order['order_number']}",
        created_by=performed_by,
    )
    invoice_service.insert_invoice_items(conn, invoice["id"], lines)
    customer_service.adjust_aggregates(
        conn, order["customer_id"], due_delta=remaining, purchases_delta=total
    )

    guarded_update(
        conn,
        orders,
        order,
        {
            "order_status": OrderStatus.DELIVERED.value,
            "actual_delivery_date": now(),
            "invoice_id": invoice["id"],
            "updated_at": now(),
        },
        label,
    )
    logger.info(
        "%s delivered as %s: total %s, collected %s, due %s",
        label, invoice["invoice_number"], total, paid, remaining,
    )
    return fetch_row(conn, orders, order_id, "Order"), invoice


# ---- Reads ----

def _row_to_item(row) -> OrderItemOut:
    return OrderItemOut(
        id=row["id"],
        line_no=row["line_no"],
        product_id=row["product_id"],
        is_custom=row["is_custom"],
        name=row["name"],
        quantity=row["quantity"],
        price=money(row["price"]),
        weight=row["weight"],
        sku=row["sku"],
        purity=row["purity"],
        making_charge=money(row["making_charge"]),
        wastage=money(row["wastage"]),
        discount=money(row["discount"]),
        line_total=money(row["line_total"]),
        target_weight=row["target_weight"],
        size=row["size"],
        item_type=row["item_type"],
        special_instructions=row["special_instructions"],
        design_image=row["design_image"],
    )


def load_order(conn: Connection, order_id: str) -> OrderOut:
    row = fetch_row(conn, orders, order_id, "Order")
    payment_rows = conn.execute(
        select(order_payments)
        .where(order_payments.c.order_id == order_id)
        .order_by(order_payments.c.created_at, order_payments.c.id)
    ).mappings().all()
    total = money(row["total_amount"])
    paid = money(row["paid_amount"])
    return OrderOut(
        id=row["id"],
        order_number=row["order_number"],
        customer_id=row["customer_id"],
        customer_name=row["customer_name"],
        customer_phone=row["customer_phone"],
        customer_email=row["customer_email"],
        items=[_row_to_item(item) for item in _order_items(conn, order_id)],
        payments=[
            OrderPaymentOut(
                id=p["id"],
                amount=money(p["amount"]),
                method=p["method"],
                type=p["type"],
                notes=p["notes"],
                performed_by=p["performed_by"],
                created_at=p["created_at"],
            )
            for p in payment_rows
        ],
        total_amount=total,
        advance_amount=money(row["advance_amount"]),
        paid_amount=paid,
        remaining_amount=money(row["remaining_amount"]),
        order_status=row["order_status"],
        payment_status=derive_order_payment_status(total, paid),
        expected_delivery_date=row["expected_delivery_date"],
        actual_delivery_date=row["actual_delivery_date"],
        invoice_id=row["invoice_id"],
        notes=row["notes"],
        created_at=row["created_at"],
        version=row["version"],
    )


def list_orders(
    conn: Connection,
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[OrderSummaryOut]:
    stmt = select(orders)
    if status is not None:
        stmt = stmt.where(orders.c.order_status == OrderStatus(status).value)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(orders.c.order_number).like(pattern),
                func.lower(orders.c.customer_name).like(pattern),
                orders.c.customer_phone.like(f"%{search}%"),
            )
        )
    lower, upper = day_bounds(start, end)
    if lower is not None:
        stmt = stmt.where(orders.c.created_at >= lower)
    if upper is not None:
        stmt = stmt.where(orders.c.created_at < upper)
    stmt = stmt.order_by(orders.c.created_at.desc(), orders.c.order_number.desc()).limit(limit).offset(offset)

    return [
        OrderSummaryOut(
            id=row["id"],
            order_number=row["order_number"],
            customer_name=row["customer_name"],
            customer_phone=row["customer_phone"],
            total_amount=money(row["total_amount"]),
            remaining_amount=money(row["remaining_amount"]),
            order_status=row["order_status"],
            payment_status=derive_order_payment_status(
                money(row["total_amount"]), money(row["paid_amount"])
            ),
            expected_delivery_date=row["expected_delivery_date"],
            created_at=row["created_at"],
        )
        for row in conn.execute(stmt).mappings().all()
    ]


_OPEN = orders.c.order_status.notin_([state.value for state in TERMINAL_ORDER_STATES])


def order_metrics(conn: Connection, as_of: Optional[date] = None) -> OrderMetricsOut:
    as_of = as_of or today()
    day_start, day_end = day_bounds(as_of, as_of)
    month_start, _ = day_bounds(as_of.replace(day=1), None)

    def count(*conditions) -> int:
        return conn.execute(select(func.count()).select_from(orders).where(and_(*conditions))).scalar_one()

    total_advance = conn.execute(
        select(func.coalesce(func.sum(orders.c.advance_amount), 0)).where(
            orders.c.order_status != OrderStatus.CANCELLED.value
        )
    ).scalar_one()
    pending_balance = conn.execute(
        select(func.coalesce(func.sum(orders.c.remaining_amount), 0)).where(_OPEN)
    ).scalar_one()
    status_rows = conn.execute(
        select(orders.c.order_status, func.count()).group_by(orders.c.order_status)
    ).all()

    return OrderMetricsOut(
        orders_today=count(orders.c.created_at >= day_start, orders.c.created_at < day_end),
        orders_month=count(orders.c.created_at >= month_start, orders.c.created_at < day_end),
        total_advance=money(total_advance),
        pending_balance=money(pending_balance),
        near_delivery=count(
            _OPEN,
            orders.c.expected_delivery_date >= as_of,
            orders.c.expected_delivery_date <= as_of + timedelta(days=1),
        ),
        overdue=count(_OPEN, orders.c.expected_delivery_date < as_of),
        status_counts={status: n for status, n in status_rows},
    )


def delivery_alerts(conn: Connection, as_of: Optional[date] = None) -> List[DeliveryAlertOut]:
    """Open orders due by tomorrow, overdue ones included, soonest first."""
    as_of = as_of or today()
    rows = conn.execute(
        select(orders)
        .where(_OPEN, orders.c.expected_delivery_date <= as_of + timedelta(days=1))
        .order_by(orders.c.expected_delivery_date, orders.c.order_number)
    ).mappings().all()
    return [
        DeliveryAlertOut(
            id=row["id"],
            order_number=row["order_number"],
            customer_name=row["customer_name"],
            customer_phone=row["customer_phone"],
            expected_delivery_date=row["expected_delivery_date"],
            order_status=row["order_status"],
            remaining_amount=money(row["remaining_amount"]),
            overdue=row["expected_delivery_date"] < as_of,
        )
        for row in rows
    ]
