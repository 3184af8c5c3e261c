# tests/test_api.py

from datetime import date, timedelta
from decimal import Decimal


def _new_customer(client, phone="9811111111", name="Meena Shah"):
    resp = client.post("/customers/", json={"name": name, "phone": phone, "email": "meena@shahjewellers.in"})
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_customer_create_and_duplicate_phone(client):
    created = _new_customer(client)
    assert Decimal(created["total_due"]) == Decimal("0")

    resp = client.post("/customers/", json={"name": "Other", "phone": created["phone"]})
    assert resp.status_code == 409
    assert resp.json()["error"] == "PreconditionFailed"


def test_invalid_email_rejected(client):
    resp = client.post("/customers/", json={"name": "X", "phone": "9811111112", "email": "not-an-email"})
    assert resp.status_code == 422


def test_unknown_invoice_is_404(client):
    resp = client.get("/invoices/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"] == "NotFound"


def test_invoice_flow(client):
    customer = _new_customer(client)
    resp = client.post(
        "/invoices/",
        json={
            "customer_id": customer["id"],
            "items": [{"description": "Chain", "rate": "10000", "weight": "1", "gst": "300"}],
            "discount": "500",
            "payment_mode": "Credit",
        },
        headers={"X-Performed-By": "counter-2"},
    )
    assert resp.status_code == 201
    invoice = resp.json()
    assert Decimal(invoice["total"]) == Decimal("9800")
    assert invoice["status"] == "Pending"
    assert invoice["created_by"] == "counter-2"

    resp = client.post(
        f"/invoices/{invoice['id']}/payments",
        json={"amount": "9800", "payment_mode": "Split", "payment_details": {"cash": "4000", "upi": "5800"}},
    )
    assert resp.status_code == 200
    paid = resp.json()
    assert paid["status"] == "Paid"
    assert Decimal(paid["due_amount"]) == Decimal("0")
    assert len(paid["payments"]) == 1

    resp = client.post(f"/invoices/{invoice['id']}/payments", json={"amount": "1", "payment_mode": "Cash"})
    assert resp.status_code == 409
    assert resp.json()["error"] == "Overpayment"

    listed = client.get("/invoices/", params={"customer_id": customer["id"], "status": "Paid"}).json()
    assert listed["total"] == 1

    txns = client.get("/transactions/", params={"category": "CUSTOMER_PAYMENT"}).json()
    assert len(txns) == 1
    assert txns[0]["reference_label"] == invoice["invoice_number"]
    assert txns[0]["payment_mode"] == "Split"


def test_split_mismatch_is_400(client):
    customer = _new_customer(client)
    resp = client.post(
        "/invoices/",
        json={
            "customer_id": customer["id"],
            "items": [{"description": "Ring", "rate": "1000", "weight": "1"}],
            "payment_mode": "Split",
            "paid_amount": "1000",
            "payment_details": {"cash": "400", "upi": "500"},
        },
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"


def test_arrears_and_audit(client):
    customer = _new_customer(client)
    for rate in ("3000", "5000"):
        client.post(
            "/invoices/",
            json={
                "customer_id": customer["id"],
                "items": [{"description": "Bangle", "rate": rate, "weight": "1"}],
                "payment_mode": "Credit",
            },
        )
    resp = client.post(
        f"/customers/{customer['id']}/clear-arrears",
        json={"amount": "4000", "payment_mode": "Cash"},
        headers={"X-Performed-By": "owner"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert [Decimal(a["amount"]) for a in body["allocations"]] == [Decimal("3000"), Decimal("1000")]
    assert Decimal(body["total_due_after"]) == Decimal("4000")

    audit = client.get(f"/customers/{customer['id']}/audit").json()
    assert audit["consistent"] is True

    resp = client.post(f"/customers/{customer['id']}/clear-arrears", json={"amount": "4000.01"})
    assert resp.status_code == 409
    assert resp.json()["error"] == "AmountExceedsDue"


def test_order_delivery_twice(client):
    customer = _new_customer(client)
    resp = client.post(
        "/orders/",
        json={
            "customer_id": customer["id"],
            "items": [{"is_custom": True, "name": "Temple necklace", "price": "50000"}],
            "advance_amount": "10000",
            "payment_method": "CASH",
            "expected_delivery_date": (date.today() + timedelta(days=5)).isoformat(),
        },
    )
    assert resp.status_code == 201
    order = resp.json()
    assert order["order_status"] == "PARTIALLY_PAID"

    resp = client.post(
        f"/orders/{order['id']}/deliver", json={"final_payment": {"amount": "40000", "method": "UPI"}}
    )
    assert resp.status_code == 200
    delivery = resp.json()
    assert delivery["order"]["order_status"] == "DELIVERED"
    assert delivery["invoice"]["order_id"] == order["id"]
    assert delivery["invoice"]["payment_mode"] == "Split"

    resp = client.post(f"/orders/{order['id']}/deliver")
    assert resp.status_code == 409
    assert resp.json()["error"] == "AlreadyDelivered"
    assert resp.json()["invoice_id"] == delivery["invoice"]["id"]

    metrics = client.get("/orders/metrics/dashboard").json()
    assert metrics["status_counts"] == {"DELIVERED": 1}


def test_old_gold_over_http(client):
    customer = _new_customer(client)
    invoice = client.post(
        "/invoices/",
        json={
            "customer_id": customer["id"],
            "items": [{"description": "Bangle", "rate": "40000", "weight": "1"}],
            "payment_mode": "Credit",
        },
    ).json()
    resp = client.post(
        "/old-gold/",
        json={"customer_id": customer["id"], "weight": "10", "purity": "100", "rate": "5500"},
    )
    assert resp.status_code == 201
    record = resp.json()
    assert Decimal(record["total_value"]) == Decimal("55000")

    resp = client.post(f"/old-gold/{record['id']}/adjust", json={"invoice_id": invoice["id"], "amount": "30000"})
    assert resp.status_code == 200
    assert Decimal(resp.json()["invoice_due_after"]) == Decimal("10000")

    resp = client.post(f"/old-gold/{record['id']}/adjust", json={"invoice_id": invoice["id"], "amount": "1"})
    assert resp.status_code == 409
    assert resp.json()["error"] == "AlreadyAdjusted"


def test_outflows_and_dashboard(client):
    customer = _new_customer(client)
    client.post(
        "/invoices/",
        json={
            "customer_id": customer["id"],
            "items": [{"description": "Pendant", "rate": "3000", "weight": "1"}],
            "payment_mode": "Cash",
            "paid_amount": "3000",
        },
    )
    resp = client.post("/expenses", json={"category": "Rent", "amount": "1000", "description": "Shop rent"})
    assert resp.status_code == 201
    resp = client.post(
        "/purchases",
        json={"supplier_name": "Kiran Bullion", "total_amount": "5000", "paid_amount": "0", "payment_mode": "Credit"},
    )
    assert resp.status_code == 201
    purchase = resp.json()
    resp = client.post(
        "/supplier-payments",
        json={"supplier_name": "Kiran Bullion", "purchase_id": purchase["id"], "amount": "500", "payment_mode": "Cash"},
    )
    assert resp.status_code == 201
    assert Decimal(client.get(f"/purchases/{purchase['id']}").json()["balance"]) == Decimal("4500")

    ledger = client.get("/dashboard/cash-ledger").json()
    assert Decimal(ledger["totals"]["cash_in"]) == Decimal("3000")
    assert Decimal(ledger["totals"]["cash_out"]) == Decimal("1500")
    assert Decimal(ledger["totals"]["net_cash"]) == Decimal("1500")

    stats = client.get("/dashboard/stats").json()
    assert Decimal(stats["cash_in_shop"]) == Decimal("1500")
    assert Decimal(stats["money_usage"]["EXPENSE"]) == Decimal("1000")
    assert stats["today_sales"]["count"] == 1

    aging = client.get("/reports/aging").json()
    assert [b["label"] for b in aging["buckets"]] == ["0-30", "31-60", "61-90", "90+"]
    assert Decimal(aging["total_due"]) == Decimal("0")


def test_products_and_rates(client):
    resp = client.post(
        "/products",
        json={"sku": "BRC-1", "name": "Bracelet", "purity": "18K", "quantity": 2, "selling_price": "15000"},
    )
    assert resp.status_code == 201
    assert client.get(f"/products/{resp.json()['id']}").json()["sku"] == "BRC-1"

    resp = client.post("/gold-rates", json={"rate24K": "6000", "rate22K": "5500", "rate18K": "4500"})
    assert resp.status_code == 201
    current = client.get("/gold-rates/current").json()
    assert Decimal(current["rate22K"]) == Decimal("5500")
