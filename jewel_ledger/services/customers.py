# jewel_ledger/services/customers.py
"""
Customer directory plus the arrears aggregate.

``total_due`` and ``total_purchases`` are materialized: every invoice mutation
moves them by a delta in the same database transaction. ``recompute`` derives
them independently from the invoice log; ``audit`` compares the two and
``reconcile`` is the only path that overwrites the stored values from the log.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, func, insert, or_, select
from sqlalchemy.engine import Connection

from jewel_ledger.db.schema import customers, invoices
from jewel_ledger.errors import (
    ConsistencyViolation, CreditLimitExceeded, PreconditionFailed, ValidationError,
)
from jewel_ledger.models.customers import CustomerAuditOut, CustomerOut, ReconcileOut
from jewel_ledger.services.common import (
    check_expected_version, fetch_row, guarded_update, new_id, now,
)
from jewel_ledger.services.pricing import ZERO, money, require_non_negative

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("name", "phone", "email", "address", "credit_limit")


def customer_out(row) -> CustomerOut:
    return CustomerOut(
        id=row["id"],
        name=row["name"],
        phone=row["phone"],
        email=row["email"],
        address=row["address"],
        credit_limit=money(row["credit_limit"]),
        total_due=money(row["total_due"]),
        total_purchases=money(row["total_purchases"]),
        version=row["version"],
        created_at=row["created_at"],
    )


# ---- Directory ----

def find_customer(conn: Connection, customer_id: str):
    return fetch_row(conn, customers, customer_id, "Customer")


def list_customers(
    conn: Connection,
    search: Optional[str] = None,
    with_dues: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> List[CustomerOut]:
    stmt = select(customers)
    if search:
        pattern = f"%{search.lower()}%"
        stmt = stmt.where(
            or_(func.lower(customers.c.name).like(pattern), customers.c.phone.like(f"%{search}%"))
        )
    if with_dues:
        stmt = stmt.where(customers.c.total_due > 0)
    stmt = stmt.order_by(customers.c.name, customers.c.id).limit(limit).offset(offset)
    rows = conn.execute(stmt).mappings().all()
    return [customer_out(row) for row in rows]


def _ensure_phone_free(conn: Connection, phone: str, customer_id: Optional[str] = None) -> None:
    stmt = select(customers.c.id).where(customers.c.phone == phone)
    if customer_id is not None:
        stmt = stmt.where(customers.c.id != customer_id)
    if conn.execute(stmt).first() is not None:
        raise PreconditionFailed(f"A customer with phone {phone} already exists")


def create_customer(
    conn: Connection,
    name: str,
    phone: str,
    email: Optional[str] = None,
    address: Optional[str] = None,
    credit_limit=ZERO,
):
    name = (name or "").strip()
    phone = (phone or "").strip()
    if not name or not phone:
        raise ValidationError("name and phone are required")
    _ensure_phone_free(conn, phone)

    customer_id = new_id()
    stamp = now()
    conn.execute(
        insert(customers).values(
            id=customer_id,
            name=name,
            phone=phone,
            email=email,
            address=address,
            credit_limit=money(require_non_negative(credit_limit, "credit limit")),
            total_due=ZERO,
            total_purchases=ZERO,
            version=1,
            created_at=stamp,
            updated_at=stamp,
        )
    )
    logger.info("Created customer %s (%s)", name, phone)
    return find_customer(conn, customer_id)


def update_customer(conn: Connection, customer_id: str, changes: Dict, expected_version: Optional[int] = None):
    """Contact fields and credit limit only; the aggregates are not writable here."""
    row = find_customer(conn, customer_id)
    check_expected_version(row, expected_version, "Customer")

    values = {}
    for field in _EDITABLE_FIELDS:
        if changes.get(field) is None:
            continue
        value = changes[field]
        if field == "credit_limit":
            value = money(require_non_negative(value, "credit limit"))
        elif isinstance(value, str):
            value = value.strip()
            if field in ("name", "phone") and not value:
                raise ValidationError(f"{field} cannot be empty")
        values[field] = value
    if "phone" in values:
        _ensure_phone_free(conn, values["phone"], customer_id)
    if not values:
        return row

    values["updated_at"] = now()
    guarded_update(conn, customers, row, values, "Customer")
    return find_customer(conn, customer_id)


# ---- Arrears aggregate ----

def adjust_aggregates(
    conn: Connection,
    customer_id: str,
    due_delta=ZERO,
    purchases_delta=ZERO,
    expected_version: Optional[int] = None,
):
    """Move the materialized aggregates by a delta, compare-and-swap on version."""
    row = find_customer(conn, customer_id)
    check_expected_version(row, expected_version, "Customer")

    total_due = money(row["total_due"]) + money(due_delta)
    total_purchases = money(row["total_purchases"]) + money(purchases_delta)
    if total_due < ZERO or total_purchases < ZERO:
        logger.error(
            "Customer %s aggregates would go negative (due %s, purchases %s)",
            customer_id, total_due, total_purchases,
        )
        raise ConsistencyViolation(
            "Customer aggregates would go negative; run an audit and reconcile",
            details={"customer_id": customer_id, "total_due": str(total_due)},
        )

    guarded_update(
        conn,
        customers,
        row,
        {"total_due": total_due, "total_purchases": total_purchases, "updated_at": now()},
        "Customer",
    )
    return find_customer(conn, customer_id)


def recompute_aggregates(conn: Connection, customer_id: str) -> Tuple[Decimal, Decimal, int]:
    """(total_due, total_purchases, open invoice count) straight from the invoice log."""
    stmt = select(
        func.coalesce(func.sum(invoices.c.due_amount), 0),
        func.coalesce(func.sum(invoices.c.total), 0),
        func.coalesce(func.sum(case((invoices.c.due_amount > 0, 1), else_=0)), 0),
    ).where(
        invoices.c.customer_id == customer_id,
        invoices.c.cancelled_at.is_(None),
    )
    due, purchases, open_count = conn.execute(stmt).one()
    return money(due), money(purchases), open_count or 0


def audit_customer(conn: Connection, customer_id: str) -> CustomerAuditOut:
    row = find_customer(conn, customer_id)
    due, purchases, open_count = recompute_aggregates(conn, customer_id)
    stored_due = money(row["total_due"])
    stored_purchases = money(row["total_purchases"])
    return CustomerAuditOut(
        customer_id=customer_id,
        stored_total_due=stored_due,
        recomputed_total_due=due,
        stored_total_purchases=stored_purchases,
        recomputed_total_purchases=purchases,
        open_invoices=open_count,
        consistent=(stored_due == due and stored_purchases == purchases),
    )


def check_consistency(conn: Connection, customer_id: str) -> CustomerAuditOut:
    """Raise ConsistencyViolation when the stored aggregates drift from the log."""
    audit = audit_customer(conn, customer_id)
    if not audit.consistent:
        logger.error(
            "Customer %s aggregates drifted: due stored=%s recomputed=%s, purchases stored=%s recomputed=%s",
            customer_id,
            audit.stored_total_due, audit.recomputed_total_due,
            audit.stored_total_purchases, audit.recomputed_total_purchases,
        )
        raise ConsistencyViolation(
            "Customer aggregates disagree with the invoice log",
            details=audit.model_dump(mode="json"),
        )
    return audit


def reconcile_customer(conn: Connection, customer_id: str) -> ReconcileOut:
    """Explicit repair pass: rewrite the aggregates from the invoice log."""
    before = audit_customer(conn, customer_id)
    if before.consistent:
        return ReconcileOut(before=before, after=before, changed=False)

    logger.warning(
        "Reconciling customer %s: due %s -> %s, purchases %s -> %s",
        customer_id,
        before.stored_total_due, before.recomputed_total_due,
        before.stored_total_purchases, before.recomputed_total_purchases,
    )
    row = find_customer(conn, customer_id)
    guarded_update(
        conn,
        customers,
        row,
        {
            "total_due": before.recomputed_total_due,
            "total_purchases": before.recomputed_total_purchases,
            "updated_at": now(),
        },
        "Customer",
    )
    after = audit_customer(conn, customer_id)
    return ReconcileOut(before=before, after=after, changed=True)


def ensure_credit_available(conn: Connection, customer_id: str, new_due) -> None:
    """A non-zero credit limit caps total_due after the new invoice."""
    row = find_customer(conn, customer_id)
    limit = money(row["credit_limit"])
    if limit <= ZERO:
        return
    projected = money(row["total_due"]) + money(new_due)
    if projected > limit:
        logger.warning(
            "Credit limit exceeded for customer %s: projected due %s > limit %s",
            customer_id, projected, limit,
        )
        raise CreditLimitExceeded(
            f"Credit limit exceeded: due would be {projected}, limit is {limit}"
        )
