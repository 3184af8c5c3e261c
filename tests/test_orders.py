# tests/test_orders.py

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from jewel_ledger.db.schema import invoices, order_payments, products, transactions
from jewel_ledger.errors import (
    AlreadyDelivered,
    CreditLimitExceeded,
    InsufficientStock,
    InvalidTransition,
    Overpayment,
    PreconditionFailed,
    ValidationError,
)
from jewel_ledger.services import customers, invoices as invoice_service, orders as order_service

NECKLACE = {"is_custom": True, "name": "Temple necklace", "price": Decimal("50000"), "size": "18in"}


def _order(engine, order_id):
    with engine.connect() as conn:
        return order_service.load_order(conn, order_id)


def _assert_remaining_matches_payments(order):
    paid = sum((p.amount for p in order.payments), Decimal("0"))
    assert order.remaining_amount == order.total_amount - paid
    assert order.remaining_amount >= 0


def _create(engine, customer_id, items=None, advance=Decimal("0"), method="CASH", due_in=7):
    with engine.begin() as conn:
        return order_service.create_order(
            conn,
            customer_id,
            items=items or [NECKLACE],
            expected_delivery_date=date.today() + timedelta(days=due_in),
            advance_amount=advance,
            payment_method=method,
        )


def test_worked_example_advance_then_deliver(engine, customer):
    created = _create(engine, customer["id"], advance=Decimal("10000"))
    order = _order(engine, created["id"])
    assert order.total_amount == Decimal("50000.00")
    assert order.remaining_amount == Decimal("40000.00")
    assert order.order_status.value == "PARTIALLY_PAID"
    assert order.payment_status.value == "ADVANCE_PAID"
    _assert_remaining_matches_payments(order)

    with engine.begin() as conn:
        delivered, invoice = order_service.deliver_order(
            conn, created["id"], final_payment=(Decimal("40000"), "UPI")
        )
    order = _order(engine, created["id"])
    assert order.remaining_amount == Decimal("0.00")
    assert order.order_status.value == "DELIVERED"
    assert order.payment_status.value == "FULL_PAID"
    assert order.actual_delivery_date is not None
    assert order.invoice_id == invoice["id"]
    assert sorted(p.type.value for p in order.payments) == ["ADVANCE", "FINAL"]
    _assert_remaining_matches_payments(order)

    with engine.connect() as conn:
        assert conn.execute(
            select(func.count()).select_from(invoices).where(invoices.c.order_id == created["id"])
        ).scalar_one() == 1
        inv = invoice_service.load_invoice(conn, invoice["id"])
        entries = conn.execute(
            select(transactions.c.category, transactions.c.payment_mode, transactions.c.amount)
            .order_by(transactions.c.amount)
        ).all()

    assert inv.total == Decimal("50000.00")
    assert inv.paid_amount == Decimal("50000.00")
    assert inv.due_amount == Decimal("0.00")
    assert inv.status.value == "Paid"
    assert inv.payment_mode == "Split"
    assert inv.payment_details.cash == Decimal("10000.00")
    assert inv.payment_details.upi == Decimal("40000.00")
    assert inv.items[0].description == "Temple necklace"
    assert inv.items[0].details["size"] == "18in"
    # delivery itself moves no money; only the two order payments are in the ledger
    assert [(c, m, Decimal(a)) for c, m, a in entries] == [
        ("ORDER_ADVANCE", "Cash", Decimal("10000")),
        ("SALES", "UPI", Decimal("40000")),
    ]

    with engine.connect() as conn:
        assert customers.audit_customer(conn, customer["id"]).consistent


def test_second_delivery_is_rejected_with_existing_invoice(engine, customer):
    created = _create(engine, customer["id"], advance=Decimal("50000"))
    with engine.begin() as conn:
        _, invoice = order_service.deliver_order(conn, created["id"])

    with pytest.raises(AlreadyDelivered) as excinfo:
        with engine.begin() as conn:
            order_service.deliver_order(conn, created["id"])
    assert excinfo.value.invoice_id == invoice["id"]

    with engine.connect() as conn:
        assert conn.execute(select(func.count()).select_from(invoices)).scalar_one() == 1


def test_delivery_with_balance_carries_due_to_invoice(engine, customer):
    created = _create(engine, customer["id"], advance=Decimal("5000"))
    with engine.begin() as conn:
        _, invoice = order_service.deliver_order(conn, created["id"])

    with engine.connect() as conn:
        inv = invoice_service.load_invoice(conn, invoice["id"])
        row = customers.find_customer(conn, customer["id"])
        audit = customers.audit_customer(conn, customer["id"])
    assert inv.paid_amount == Decimal("5000.00")
    assert inv.due_amount == Decimal("45000.00")
    assert inv.status.value == "Partial"
    assert inv.payment_mode == "Cash"
    assert row["total_due"] == Decimal("45000")
    assert audit.consistent


def test_delivery_without_any_payment_bills_on_credit(engine, customer):
    created = _create(engine, customer["id"])
    with engine.begin() as conn:
        _, invoice = order_service.deliver_order(conn, created["id"])
    assert invoice["payment_mode"] == "Credit"
    assert invoice["status"] == "Pending"


def test_failed_delivery_rolls_back_stock_and_order(engine, customer, ring, chain):
    items = [
        {"product_id": ring["id"], "quantity": 2, "price": Decimal("10000")},
        {"product_id": chain["id"], "quantity": 1, "price": Decimal("300000"), "weight": Decimal("55")},
    ]
    created = _create(engine, customer["id"], items=items, advance=Decimal("1000"))

    with pytest.raises(InsufficientStock):
        with engine.begin() as conn:
            order_service.deliver_order(conn, created["id"], final_payment=(Decimal("500"), "CASH"))

    order = _order(engine, created["id"])
    assert order.order_status.value == "PARTIALLY_PAID"
    assert order.paid_amount == Decimal("1000.00")
    assert order.invoice_id is None
    with engine.connect() as conn:
        assert conn.execute(select(products.c.quantity).where(products.c.id == ring["id"])).scalar() == 5
        assert Decimal(
            conn.execute(select(products.c.available_weight).where(products.c.id == chain["id"])).scalar()
        ) == Decimal("50")
        assert conn.execute(select(invoices)).first() is None
        assert conn.execute(select(func.count()).select_from(order_payments)).scalar_one() == 1


def test_delivery_decrements_weight_times_quantity(engine, customer, chain):
    items = [
        {
            "product_id": chain["id"],
            "quantity": 2,
            "price": Decimal("60000"),
            "weight": Decimal("10"),
            "making_charge": Decimal("1500"),
        }
    ]
    created = _create(engine, customer["id"], items=items)
    with engine.begin() as conn:
        _, invoice = order_service.deliver_order(conn, created["id"])
    with engine.connect() as conn:
        left = conn.execute(select(products.c.available_weight).where(products.c.id == chain["id"])).scalar()
        line = invoice_service.load_invoice(conn, invoice["id"]).items[0]
    assert Decimal(left) == Decimal("30")

    # the invoice line shows the metal drawn and prices per piece
    assert line.weight == Decimal("20")
    assert line.details["priced_per"] == "piece"
    assert line.rate * line.quantity + line.making_charge + line.wastage - line.discount == line.subtotal
    assert line.subtotal == Decimal("121500.00")


def test_weight_managed_line_needs_a_weight(engine, customer, chain):
    with pytest.raises(ValidationError):
        _create(engine, customer["id"], items=[{"product_id": chain["id"], "price": Decimal("60000")}])

    items = [{"product_id": chain["id"], "price": Decimal("60000"), "weight": Decimal("10")}]
    created = _create(engine, customer["id"], items=items)
    item_id = _order(engine, created["id"]).items[0].id
    with pytest.raises(ValidationError):
        with engine.begin() as conn:
            order_service.patch_order_item(conn, created["id"], item_id, {"weight": Decimal("0")})
    assert _order(engine, created["id"]).items[0].weight == Decimal("10")

    with engine.begin() as conn:
        order_service.deliver_order(conn, created["id"])
    assert _order(engine, created["id"]).order_status.value == "DELIVERED"


def test_delivery_on_credit_respects_credit_limit(engine):
    with engine.begin() as conn:
        limited = customers.create_customer(conn, "Kiran", "9800000009", credit_limit=Decimal("1000"))
    created = _create(engine, limited["id"])

    with pytest.raises(CreditLimitExceeded):
        with engine.begin() as conn:
            order_service.deliver_order(conn, created["id"])

    order = _order(engine, created["id"])
    assert order.order_status.value == "PENDING"
    assert order.invoice_id is None
    with engine.connect() as conn:
        assert conn.execute(select(invoices)).first() is None
        assert customers.find_customer(conn, limited["id"])["total_due"] == Decimal("0")

    # paying the balance on the way out stays within the limit
    with engine.begin() as conn:
        _, invoice = order_service.deliver_order(conn, created["id"], final_payment=(Decimal("49500"), "UPI"))
    assert invoice["due_amount"] == Decimal("500")


class TestPayments:
    def test_partial_payment(self, engine, customer):
        created = _create(engine, customer["id"])
        with engine.begin() as conn:
            order_service.add_order_payment(conn, created["id"], Decimal("15000"), "BANK_TRANSFER")
        order = _order(engine, created["id"])
        assert order.remaining_amount == Decimal("35000.00")
        assert order.order_status.value == "PARTIALLY_PAID"
        _assert_remaining_matches_payments(order)

        with engine.connect() as conn:
            txn = conn.execute(select(transactions)).mappings().one()
        assert txn["category"] == "CUSTOMER_PAYMENT"
        assert txn["payment_mode"] == "Bank Transfer"

    def test_overpayment_rejected(self, engine, customer):
        created = _create(engine, customer["id"], advance=Decimal("10000"))
        with pytest.raises(Overpayment):
            with engine.begin() as conn:
                order_service.add_order_payment(conn, created["id"], Decimal("40001"))
        order = _order(engine, created["id"])
        assert order.remaining_amount == Decimal("40000.00")
        assert len(order.payments) == 1

    def test_advance_above_total_rejected(self, engine, customer):
        with pytest.raises(Overpayment):
            _create(engine, customer["id"], advance=Decimal("50001"))

    def test_other_method_settles_as_cash(self, engine, customer):
        created = _create(engine, customer["id"], advance=Decimal("100"), method="OTHER")
        with engine.connect() as conn:
            txn = conn.execute(select(transactions)).mappings().one()
        assert txn["payment_mode"] == "Cash"
        assert txn["category"] == "ORDER_ADVANCE"
        assert created["advance_amount"] == Decimal("100")

    def test_no_payment_on_cancelled_order(self, engine, customer):
        created = _create(engine, customer["id"])
        with engine.begin() as conn:
            order_service.update_order_status(conn, created["id"], "CANCELLED")
        with pytest.raises(InvalidTransition):
            with engine.begin() as conn:
                order_service.add_order_payment(conn, created["id"], Decimal("100"))


class TestItemEdits:
    def test_patch_recomputes_totals(self, engine, customer):
        created = _create(engine, customer["id"], advance=Decimal("10000"))
        item_id = _order(engine, created["id"]).items[0].id
        with engine.begin() as conn:
            order_service.patch_order_item(
                conn, created["id"], item_id, {"price": Decimal("45000"), "making_charge": Decimal("2000")}
            )
        order = _order(engine, created["id"])
        assert order.total_amount == Decimal("47000.00")
        assert order.remaining_amount == Decimal("37000.00")
        assert order.items[0].size == "18in"
        _assert_remaining_matches_payments(order)

    def test_patch_below_paid_rejected(self, engine, customer):
        created = _create(engine, customer["id"], advance=Decimal("10000"))
        item_id = _order(engine, created["id"]).items[0].id
        with pytest.raises(Overpayment):
            with engine.begin() as conn:
                order_service.patch_order_item(conn, created["id"], item_id, {"price": Decimal("9000")})
        assert _order(engine, created["id"]).total_amount == Decimal("50000.00")

    def test_delete_item(self, engine, customer):
        items = [NECKLACE, {"is_custom": True, "name": "Nose pin", "price": Decimal("3000")}]
        created = _create(engine, customer["id"], items=items)
        order = _order(engine, created["id"])
        assert order.total_amount == Decimal("53000.00")

        with engine.begin() as conn:
            order_service.delete_order_item(conn, created["id"], order.items[1].id)
        order = _order(engine, created["id"])
        assert order.total_amount == Decimal("50000.00")
        assert len(order.items) == 1

        with pytest.raises(PreconditionFailed):
            with engine.begin() as conn:
                order_service.delete_order_item(conn, created["id"], order.items[0].id)

    def test_no_edits_after_delivery(self, engine, customer):
        created = _create(engine, customer["id"])
        item_id = _order(engine, created["id"]).items[0].id
        with engine.begin() as conn:
            order_service.deliver_order(conn, created["id"])
        with pytest.raises(AlreadyDelivered):
            with engine.begin() as conn:
                order_service.patch_order_item(conn, created["id"], item_id, {"price": Decimal("1")})


class TestStatus:
    def test_mark_ready_then_deliver(self, engine, customer):
        created = _create(engine, customer["id"])
        with engine.begin() as conn:
            order_service.update_order_status(conn, created["id"], "READY")
            order_service.add_order_payment(conn, created["id"], Decimal("1000"))
        # READY is not pulled back to PARTIALLY_PAID by a payment
        assert _order(engine, created["id"]).order_status.value == "READY"

    def test_delivered_only_through_delivery(self, engine, customer):
        created = _create(engine, customer["id"])
        with pytest.raises(InvalidTransition):
            with engine.begin() as conn:
                order_service.update_order_status(conn, created["id"], "DELIVERED")

    def test_cancelled_is_terminal(self, engine, customer):
        created = _create(engine, customer["id"])
        with engine.begin() as conn:
            order_service.update_order_status(conn, created["id"], "CANCELLED")
        with pytest.raises(InvalidTransition):
            with engine.begin() as conn:
                order_service.update_order_status(conn, created["id"], "READY")
        with pytest.raises(InvalidTransition):
            with engine.begin() as conn:
                order_service.deliver_order(conn, created["id"])


def test_catalog_item_requires_product(engine, customer):
    with pytest.raises(ValidationError):
        _create(engine, customer["id"], items=[{"name": "Loose", "price": Decimal("100")}])


def test_metrics_and_alerts(engine, customer):
    due_tomorrow = _create(engine, customer["id"], advance=Decimal("2000"), due_in=1)
    overdue = _create(engine, customer["id"], due_in=-3)
    _create(engine, customer["id"], due_in=10)
    delivered = _create(engine, customer["id"], due_in=0)
    with engine.begin() as conn:
        order_service.deliver_order(conn, delivered["id"])

    with engine.connect() as conn:
        alerts = order_service.delivery_alerts(conn, date.today())
        metrics = order_service.order_metrics(conn, date.today())

    assert [a.id for a in alerts] == [overdue["id"], due_tomorrow["id"]]
    assert alerts[0].overdue is True
    assert alerts[1].overdue is False
    assert metrics.near_delivery == 1
    assert metrics.overdue == 1
    assert metrics.total_advance == Decimal("2000.00")
    assert metrics.pending_balance == Decimal("148000.00")
    assert metrics.status_counts["DELIVERED"] == 1
