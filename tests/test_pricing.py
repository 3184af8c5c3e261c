# tests/test_pricing.py

from decimal import Decimal

import pytest

from jewel_ledger.errors import InvalidTransition, ValidationError
from jewel_ledger.models.common import InvoiceStatus, OrderPaymentStatus, OrderStatus
from jewel_ledger.services.pricing import (
    document_total,
    money,
    old_gold_value,
    order_line_total,
    price_line,
    purity_factor,
)
from jewel_ledger.services.status import (
    derive_invoice_status,
    derive_order_payment_status,
    ensure_transition,
    order_status_after_payment,
)


def test_line_subtotal_and_total():
    line = price_line(
        rate=Decimal("5500"),
        weight=Decimal("2"),
        making_charge=Decimal("800"),
        wastage=Decimal("200"),
        discount=Decimal("100"),
        old_gold_adjustment=Decimal("1000"),
        gst=Decimal("297"),
    )
    assert line.subtotal == Decimal("10900.00")
    assert line.line_total == Decimal("11197.00")


def test_money_rounds_half_up():
    assert money(Decimal("0.005")) == Decimal("0.01")
    assert money(Decimal("2.345")) == Decimal("2.35")
    assert money("10") == Decimal("10.00")


def test_line_rounding_is_applied_once_to_the_subtotal():
    line = price_line(rate=Decimal("333.335"), weight=Decimal("1"))
    assert line.subtotal == Decimal("333.34")


@pytest.mark.parametrize("field", ["rate", "weight"])
def test_negative_rate_or_weight_rejected(field):
    kwargs = {"rate": Decimal("100"), "weight": Decimal("1")}
    kwargs[field] = Decimal("-1")
    with pytest.raises(ValidationError):
        price_line(**kwargs)


def test_document_total_matches_worked_example():
    # subtotal 10000, discount 500, exchange 0, gst 300
    line = price_line(rate=Decimal("10000"), weight=Decimal("1"), gst=Decimal("300"))
    totals = document_total([line], discount=Decimal("500"))
    assert totals.subtotal == Decimal("10000.00")
    assert totals.gst == Decimal("300.00")
    assert totals.total == Decimal("9800.00")
    assert totals.total == totals.subtotal - totals.discount - totals.exchange_amount + totals.gst
    assert totals.shortfall == Decimal("0")


def test_document_total_clamps_at_zero_and_reports_shortfall():
    line = price_line(rate=Decimal("1000"), weight=Decimal("1"))
    totals = document_total([line], discount=Decimal("200"), exchange_total=Decimal("1500"))
    assert totals.total == Decimal("0.00")
    assert totals.shortfall == Decimal("700.00")


def test_order_line_total():
    assert order_line_total(Decimal("25000"), 2, Decimal("1000"), Decimal("0"), Decimal("500")) == Decimal(
        "50500.00"
    )
    with pytest.raises(ValidationError):
        order_line_total(Decimal("100"), 0)


@pytest.mark.parametrize(
    "purity, factor",
    [
        ("22K", Decimal("1")),
        ("18 kt", Decimal("1")),
        ("100", Decimal("1")),
        ("91.6", Decimal("0.916")),
        ("91.6%", Decimal("0.916")),
        ("916", Decimal("0.916")),
    ],
)
def test_purity_factor(purity, factor):
    assert purity_factor(purity) == factor


@pytest.mark.parametrize("purity", [None, "", "gold", "0", "1200"])
def test_purity_factor_rejects_garbage(purity):
    with pytest.raises(ValidationError):
        purity_factor(purity)


def test_old_gold_value():
    assert old_gold_value(Decimal("10"), Decimal("5500"), "100") == Decimal("55000.00")
    assert old_gold_value(Decimal("10"), Decimal("6000"), "91.6") == Decimal("54960.00")
    with pytest.raises(ValidationError):
        old_gold_value(Decimal("0"), Decimal("6000"), "22K")


class TestStatusDerivation:
    def test_invoice_status(self):
        assert derive_invoice_status(Decimal("9800"), Decimal("9800")) == InvoiceStatus.PENDING
        assert derive_invoice_status(Decimal("5800"), Decimal("9800")) == InvoiceStatus.PARTIAL
        assert derive_invoice_status(Decimal("0"), Decimal("9800")) == InvoiceStatus.PAID
        assert derive_invoice_status(Decimal("0"), Decimal("0")) == InvoiceStatus.PAID

    def test_order_payment_status(self):
        assert derive_order_payment_status(Decimal("100"), Decimal("0")) == OrderPaymentStatus.UNPAID
        assert derive_order_payment_status(Decimal("100"), Decimal("40")) == OrderPaymentStatus.ADVANCE_PAID
        assert derive_order_payment_status(Decimal("100"), Decimal("100")) == OrderPaymentStatus.FULL_PAID

    def test_first_payment_moves_pending_order(self):
        assert order_status_after_payment(OrderStatus.PENDING, Decimal("1")) == OrderStatus.PARTIALLY_PAID
        assert order_status_after_payment(OrderStatus.READY, Decimal("1")) == OrderStatus.READY

    def test_transitions(self):
        ensure_transition(OrderStatus.PENDING, OrderStatus.READY)
        ensure_transition(OrderStatus.READY, OrderStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            ensure_transition(OrderStatus.CANCELLED, OrderStatus.READY)
        with pytest.raises(InvalidTransition):
            ensure_transition(OrderStatus.READY, OrderStatus.PENDING)
