# tests/test_customers.py

from decimal import Decimal

import pytest
from sqlalchemy import update

from jewel_ledger.db.schema import customers as customers_table
from jewel_ledger.errors import ConcurrencyConflict, ConsistencyViolation, PreconditionFailed, ValidationError
from jewel_ledger.services import customers


def _drift(engine, customer_id, **values):
    with engine.begin() as conn:
        conn.execute(update(customers_table).where(customers_table.c.id == customer_id).values(**values))


def test_phone_is_unique(engine, customer):
    with pytest.raises(PreconditionFailed):
        with engine.begin() as conn:
            customers.create_customer(conn, name="Someone Else", phone="9800000001")


def test_name_and_phone_required(engine):
    with pytest.raises(ValidationError):
        with engine.begin() as conn:
            customers.create_customer(conn, name="  ", phone="9800000009")


def test_update_contact_fields(engine, customer):
    with engine.begin() as conn:
        updated = customers.update_customer(
            conn, customer["id"], {"address": "12 MG Road", "credit_limit": Decimal("50000")}, expected_version=1
        )
    assert updated["address"] == "12 MG Road"
    assert updated["credit_limit"] == Decimal("50000")
    assert updated["version"] == 2

    with pytest.raises(ConcurrencyConflict):
        with engine.begin() as conn:
            customers.update_customer(conn, customer["id"], {"name": "Asha M"}, expected_version=1)


def test_update_cannot_take_another_phone(engine, customer, other_customer):
    with pytest.raises(PreconditionFailed):
        with engine.begin() as conn:
            customers.update_customer(conn, customer["id"], {"phone": other_customer["phone"]})


def test_audit_matches_invoice_log(engine, customer, credit_invoice):
    credit_invoice(customer["id"], 2500)
    credit_invoice(customer["id"], 1500)
    with engine.connect() as conn:
        audit = customers.check_consistency(conn, customer["id"])
    assert audit.consistent
    assert audit.stored_total_due == Decimal("4000.00")
    assert audit.recomputed_total_purchases == Decimal("4000.00")
    assert audit.open_invoices == 2


def test_drift_is_reported_then_reconciled(engine, customer, credit_invoice):
    credit_invoice(customer["id"], 2500)
    _drift(engine, customer["id"], total_due=Decimal("100"))

    with engine.connect() as conn:
        audit = customers.audit_customer(conn, customer["id"])
        assert not audit.consistent
        with pytest.raises(ConsistencyViolation) as excinfo:
            customers.check_consistency(conn, customer["id"])
    assert excinfo.value.details["recomputed_total_due"] == "2500.00"

    with engine.begin() as conn:
        result = customers.reconcile_customer(conn, customer["id"])
    assert result.changed
    assert result.before.stored_total_due == Decimal("100.00")
    assert result.after.stored_total_due == Decimal("2500.00")
    assert result.after.consistent

    with engine.begin() as conn:
        again = customers.reconcile_customer(conn, customer["id"])
    assert not again.changed


def test_aggregates_never_go_negative(engine, customer):
    with pytest.raises(ConsistencyViolation):
        with engine.begin() as conn:
            customers.adjust_aggregates(conn, customer["id"], due_delta=Decimal("-1"))


def test_list_with_dues(engine, customer, other_customer, credit_invoice):
    credit_invoice(other_customer["id"], 700)
    with engine.connect() as conn:
        owing = customers.list_customers(conn, with_dues=True)
        found = customers.list_customers(conn, search="asha")
    assert [c.id for c in owing] == [other_customer["id"]]
    assert [c.id for c in found] == [customer["id"]]
