# jewel_ledger/api/invoices.py

from datetime import date
from typing import Optional

from fastapi import APIRouter, Header, Query

from jewel_ledger.db.engine import get_engine
from jewel_ledger.models.common import InvoiceStatus
from jewel_ledger.models.invoices import (
    InvoiceCreate,
    InvoiceListResponse,
    InvoiceOut,
    InvoicePaymentIn,
)
from jewel_ledger.services import invoices as invoice_service
from jewel_ledger.services import payments

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("/", response_model=InvoiceListResponse)
def list_invoices(
    customer_id: Optional[str] = Query(default=None),
    status: Optional[InvoiceStatus] = Query(default=None),
    start: Optional[date] = Query(default=None, description="Created on or after (YYYY-MM-DD)"),
    end: Optional[date] = Query(default=None, description="Created on or before (YYYY-MM-DD)"),
    include_cancelled: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> InvoiceListResponse:
    """
    Paginated invoice list, newest first. Cancelled invoices are hidden unless asked for.
    """
    engine = get_engine()
    with engine.connect() as conn:
        return invoice_service.list_invoices(
            conn,
            customer_id=customer_id,
            status=status.value if status else None,
            start=start,
            end=end,
            include_cancelled=include_cancelled,
            limit=limit,
            offset=offset,
        )


@router.post("/", response_model=InvoiceOut, status_code=201)
def create_invoice(
    body: InvoiceCreate,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> InvoiceOut:
    engine = get_engine()
    with engine.begin() as conn:
        invoice = invoice_service.create_invoice(
            conn,
            customer_id=body.customer_id,
            items=body.items,
            discount=body.discount,
            exchange_items=body.exchange_items,
            exchange_record_ids=body.exchange_record_ids,
            payment_mode=body.payment_mode,
            paid_amount=body.paid_amount,
            payment_details=body.payment_details,
            gold_rate=body.gold_rate,
            notes=body.notes,
            performed_by=performed_by,
        )
        return invoice_service.load_invoice(conn, invoice["id"])


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(invoice_id: str) -> InvoiceOut:
    engine = get_engine()
    with engine.connect() as conn:
        return invoice_service.load_invoice(conn, invoice_id)


@router.post("/{invoice_id}/payments", response_model=InvoiceOut)
def add_invoice_payment(
    invoice_id: str,
    body: InvoicePaymentIn,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> InvoiceOut:
    """
    Apply a payment to one invoice. Rejected if it is more than the invoice's due.
    """
    engine = get_engine()
    with engine.begin() as conn:
        payments.apply_invoice_payment(
            conn,
            invoice_id,
            amount=body.amount,
            payment_mode=body.payment_mode,
            payment_details=body.payment_details,
            performed_by=performed_by,
            expected_version=body.expected_version,
        )
        return invoice_service.load_invoice(conn, invoice_id)


@router.post("/{invoice_id}/cancel", response_model=InvoiceOut)
def cancel_invoice(
    invoice_id: str,
    expected_version: Optional[int] = Query(default=None),
) -> InvoiceOut:
    engine = get_engine()
    with engine.begin() as conn:
        invoice_service.cancel_invoice(conn, invoice_id, expected_version=expected_version)
        return invoice_service.load_invoice(conn, invoice_id)
