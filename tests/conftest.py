# tests/conftest.py

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from jewel_ledger.db.engine import get_engine, reset_engines
from jewel_ledger.db.schema import metadata
from jewel_ledger.services import catalog, customers, invoices


@pytest.fixture
def engine(tmp_path, monkeypatch):
    """A fresh SQLite database per test."""
    monkeypatch.setenv("JEWEL_LEDGER_DB_URL", f"sqlite:///{tmp_path / 'ledger.sqlite'}")
    reset_engines()
    engine = get_engine()
    metadata.create_all(engine)
    yield engine
    reset_engines()


@pytest.fixture
def client(engine):
    from jewel_ledger import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def customer(engine):
    with engine.begin() as conn:
        return customers.create_customer(conn, name="Asha Mehta", phone="9800000001")


@pytest.fixture
def other_customer(engine):
    with engine.begin() as conn:
        return customers.create_customer(conn, name="Ravi Kumar", phone="9800000002")


@pytest.fixture
def ring(engine):
    """Piece-counted catalog product."""
    with engine.begin() as conn:
        return catalog.add_product(
            conn,
            sku="RNG-001",
            name="Gold Ring",
            purity="22K",
            quantity=5,
            purchase_price=Decimal("8000"),
            selling_price=Decimal("10000"),
        )


@pytest.fixture
def chain(engine):
    """Weight-managed catalog product with 50 g in stock."""
    with engine.begin() as conn:
        return catalog.add_product(
            conn,
            sku="CHN-22K",
            name="22K Chain",
            purity="22K",
            is_weight_managed=True,
            available_weight=Decimal("50"),
            purchase_price=Decimal("5200"),
        )


@pytest.fixture
def rates(engine):
    with engine.begin() as conn:
        return catalog.record_rates(
            conn,
            rate24K=Decimal("6000"),
            rate22K=Decimal("5500"),
            rate18K=Decimal("4500"),
        )


@pytest.fixture
def credit_invoice(engine):
    """Bill one uncatalogued line worth ``amount`` entirely on credit."""

    def _bill(customer_id, amount, **kwargs):
        with engine.begin() as conn:
            return invoices.create_invoice(
                conn,
                customer_id,
                items=[{"description": "Bangle", "rate": Decimal(str(amount)), "weight": 1}],
                payment_mode="Credit",
                **kwargs,
            )

    return _bill
