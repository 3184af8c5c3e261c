# tests/test_old_gold.py

from decimal import Decimal

import pytest
from sqlalchemy import select

from jewel_ledger.db.schema import invoice_payments, transactions
from jewel_ledger.errors import (
    AlreadyAdjusted,
    AmountExceedsCredit,
    AmountExceedsDue,
    PreconditionFailed,
    ValidationError,
)
from jewel_ledger.services import customers, exchange, invoices


def _record(engine, customer_id, **kwargs):
    values = {"weight": Decimal("10"), "purity": "100", "rate": Decimal("5500")}
    values.update(kwargs)
    with engine.begin() as conn:
        return exchange.create_old_gold_record(conn, customer_id, **values)


def test_record_is_valued_and_held_as_credit(engine, customer):
    record = _record(engine, customer["id"])
    assert record["total_value"] == Decimal("55000")
    assert record["status"] == "Pending"
    with engine.connect() as conn:
        assert conn.execute(select(transactions)).first() is None


def test_adjust_against_invoice(engine, customer, credit_invoice):
    record = _record(engine, customer["id"])
    invoice = credit_invoice(customer["id"], 40000)

    with engine.begin() as conn:
        result = exchange.adjust_old_gold(conn, record["id"], invoice["id"], Decimal("30000"))

    assert result.invoice_due_after == Decimal("10000.00")
    assert result.invoice_status.value == "Partial"
    assert result.record.status.value == "Adjusted"
    assert result.record.adjusted_against.invoice_id == invoice["id"]
    assert result.record.adjusted_against.invoice_number == invoice["invoice_number"]
    assert result.record.adjusted_against.amount == Decimal("30000.00")

    with engine.connect() as conn:
        inv = invoices.load_invoice(conn, invoice["id"])
        txn = conn.execute(select(transactions)).mappings().one()
        assert conn.execute(select(invoice_payments)).first() is None
        assert customers.audit_customer(conn, customer["id"]).consistent
        assert customers.find_customer(conn, customer["id"])["total_due"] == Decimal("10000")

    assert inv.payment_details.exchange == Decimal("30000.00")
    assert inv.payment_mode == "Exchange"
    assert txn["id"] == result.transaction_id
    assert txn["type"] == "ADJUSTMENT"
    assert txn["category"] == "OLD_GOLD"
    assert txn["payment_mode"] == "Exchange"
    assert txn["ref_model"] == "OldGold"
    assert Decimal(txn["amount"]) == Decimal("30000")


def test_second_adjustment_rejected(engine, customer, credit_invoice):
    record = _record(engine, customer["id"])
    invoice = credit_invoice(customer["id"], 40000)
    with engine.begin() as conn:
        exchange.adjust_old_gold(conn, record["id"], invoice["id"], Decimal("30000"))

    with pytest.raises(AlreadyAdjusted):
        with engine.begin() as conn:
            exchange.adjust_old_gold(conn, record["id"], invoice["id"], Decimal("5000"))

    with engine.connect() as conn:
        assert invoices.load_invoice(conn, invoice["id"]).due_amount == Decimal("10000.00")


def test_amount_above_record_value(engine, customer, credit_invoice):
    record = _record(engine, customer["id"], weight=Decimal("1"))
    invoice = credit_invoice(customer["id"], 40000)
    with pytest.raises(AmountExceedsCredit):
        with engine.begin() as conn:
            exchange.adjust_old_gold(conn, record["id"], invoice["id"], Decimal("5501"))


def test_amount_above_invoice_due(engine, customer, credit_invoice):
    record = _record(engine, customer["id"])
    invoice = credit_invoice(customer["id"], 20000)
    with pytest.raises(AmountExceedsDue):
        with engine.begin() as conn:
            exchange.adjust_old_gold(conn, record["id"], invoice["id"], Decimal("20001"))

    with engine.connect() as conn:
        assert exchange.load_old_gold(conn, record["id"]).status.value == "Pending"


def test_invoice_of_another_customer_rejected(engine, customer, other_customer, credit_invoice):
    record = _record(engine, customer["id"])
    invoice = credit_invoice(other_customer["id"], 40000)
    with pytest.raises(PreconditionFailed):
        with engine.begin() as conn:
            exchange.adjust_old_gold(conn, record["id"], invoice["id"], Decimal("1000"))


def test_cancelled_invoice_rejected(engine, customer, credit_invoice):
    record = _record(engine, customer["id"])
    invoice = credit_invoice(customer["id"], 40000)
    with engine.begin() as conn:
        invoices.cancel_invoice(conn, invoice["id"])
    with pytest.raises(PreconditionFailed):
        with engine.begin() as conn:
            exchange.adjust_old_gold(conn, record["id"], invoice["id"], Decimal("1000"))


def test_payout_writes_debit(engine, customer):
    record = _record(engine, customer["id"], purity="91.6", rate=Decimal("6000"), payout_mode="UPI")
    assert record["status"] == "PaidOut"
    with engine.connect() as conn:
        txn = conn.execute(select(transactions)).mappings().one()
    assert txn["type"] == "DEBIT"
    assert txn["category"] == "OLD_GOLD"
    assert txn["payment_mode"] == "UPI"
    assert Decimal(txn["amount"]) == Decimal("54960")

    with pytest.raises(AlreadyAdjusted):
        with engine.begin() as conn:
            exchange.adjust_old_gold(conn, record["id"], "missing", Decimal("1"))


@pytest.mark.parametrize("mode", ["Credit", "Split", "Exchange", "Barter"])
def test_payout_needs_a_real_money_mode(engine, customer, mode):
    with pytest.raises(ValidationError):
        _record(engine, customer["id"], payout_mode=mode)


def test_bad_purity_rejected(engine, customer):
    with pytest.raises(ValidationError):
        _record(engine, customer["id"], purity="shiny")


def test_list_filters_by_status(engine, customer):
    pending = _record(engine, customer["id"])
    _record(engine, customer["id"], payout_mode="Cash")
    with engine.connect() as conn:
        listed = exchange.list_old_gold(conn, status="Pending", customer_id=customer["id"])
    assert [r.id for r in listed] == [pending["id"]]
