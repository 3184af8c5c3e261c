# jewel_ledger/api/orders.py

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Header, Query

from jewel_ledger.db.engine import get_engine
from jewel_ledger.models.common import OrderStatus
from jewel_ledger.models.orders import (
    DeliverIn,
    DeliveryAlertOut,
    DeliveryOut,
    OrderCreate,
    OrderItemPatch,
    OrderMetricsOut,
    OrderOut,
    OrderPaymentIn,
    OrderStatusUpdate,
    OrderSummaryOut,
)
from jewel_ledger.services import invoices as invoice_service
from jewel_ledger.services import orders as order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/", response_model=List[OrderSummaryOut])
def list_orders(
    status: Optional[OrderStatus] = Query(default=None),
    search: Optional[str] = Query(default=None, description="Order number, customer name or phone"),
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> List[OrderSummaryOut]:
    engine = get_engine()
    with engine.connect() as conn:
        return order_service.list_orders(conn, status, search, start, end, limit, offset)


@router.post("/", response_model=OrderOut, status_code=201)
def create_order(
    body: OrderCreate,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> OrderOut:
    engine = get_engine()
    with engine.begin() as conn:
        order = order_service.create_order(
            conn,
            customer_id=body.customer_id,
            items=body.items,
            expected_delivery_date=body.expected_delivery_date,
            advance_amount=body.advance_amount,
            payment_method=body.payment_method,
            notes=body.notes,
            performed_by=performed_by,
        )
        return order_service.load_order(conn, order["id"])


# Fixed paths are declared before /{order_id} so they are not captured by it.

@router.get("/metrics/dashboard", response_model=OrderMetricsOut)
def order_metrics(as_of: Optional[date] = Query(default=None)) -> OrderMetricsOut:
    engine = get_engine()
    with engine.connect() as conn:
        return order_service.order_metrics(conn, as_of)


@router.get("/alerts/delivery", response_model=List[DeliveryAlertOut])
def delivery_alerts(as_of: Optional[date] = Query(default=None)) -> List[DeliveryAlertOut]:
    """
    Open orders due today or tomorrow, plus anything overdue.
    """
    engine = get_engine()
    with engine.connect() as conn:
        return order_service.delivery_alerts(conn, as_of)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str) -> OrderOut:
    engine = get_engine()
    with engine.connect() as conn:
        return order_service.load_order(conn, order_id)


@router.post("/{order_id}/payments", response_model=OrderOut)
def add_order_payment(
    order_id: str,
    body: OrderPaymentIn,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> OrderOut:
    engine = get_engine()
    with engine.begin() as conn:
        order_service.add_order_payment(
            conn,
            order_id,
            amount=body.amount,
            method=body.method,
            notes=body.notes,
            performed_by=performed_by,
            expected_version=body.expected_version,
        )
        return order_service.load_order(conn, order_id)


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_order_status(order_id: str, body: OrderStatusUpdate) -> OrderOut:
    engine = get_engine()
    with engine.begin() as conn:
        order_service.update_order_status(
            conn, order_id, body.status, expected_version=body.expected_version
        )
        return order_service.load_order(conn, order_id)


@router.patch("/{order_id}/items/{item_id}", response_model=OrderOut)
def patch_order_item(order_id: str, item_id: str, body: OrderItemPatch) -> OrderOut:
    engine = get_engine()
    with engine.begin() as conn:
        order_service.patch_order_item(
            conn,
            order_id,
            item_id,
            body.model_dump(exclude={"expected_version"}, exclude_none=True),
            expected_version=body.expected_version,
        )
        return order_service.load_order(conn, order_id)


@router.delete("/{order_id}/items/{item_id}", response_model=OrderOut)
def delete_order_item(
    order_id: str,
    item_id: str,
    expected_version: Optional[int] = Query(default=None),
) -> OrderOut:
    engine = get_engine()
    with engine.begin() as conn:
        order_service.delete_order_item(conn, order_id, item_id, expected_version=expected_version)
        return order_service.load_order(conn, order_id)


@router.post("/{order_id}/deliver", response_model=DeliveryOut)
def deliver_order(
    order_id: str,
    body: Optional[DeliverIn] = None,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> DeliveryOut:
    """
    Deliver the order and generate its invoice. Outstanding balance carries
    over to the invoice as due.
    """
    body = body or DeliverIn()
    final_payment = None
    if body.final_payment is not None:
        final_payment = (body.final_payment.amount, body.final_payment.method)

    engine = get_engine()
    with engine.begin() as conn:
        order, invoice = order_service.deliver_order(
            conn,
            order_id,
            final_payment=final_payment,
            performed_by=performed_by,
            expected_version=body.expected_version,
        )
        return DeliveryOut(
            order=order_service.load_order(conn, order["id"]),
            invoice=invoice_service.load_invoice(conn, invoice["id"]),
        )
