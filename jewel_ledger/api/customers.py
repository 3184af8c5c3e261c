# jewel_ledger/api/customers.py

from typing import List, Optional

from fastapi import APIRouter, Header, Query

from jewel_ledger.db.engine import get_engine
from jewel_ledger.models.customers import (
    ArrearsPaymentIn,
    ArrearsPaymentOut,
    CustomerAuditOut,
    CustomerIn,
    CustomerOut,
    CustomerUpdate,
    ReconcileOut,
)
from jewel_ledger.models.invoices import InvoiceListResponse
from jewel_ledger.services import customers as customer_service
from jewel_ledger.services import invoices as invoice_service
from jewel_ledger.services import payments

router = APIRouter(prefix="/customers", tags=["customers"])


@router.get("/", response_model=List[CustomerOut])
def list_customers(
    search: Optional[str] = Query(default=None, description="Name or phone fragment"),
    with_dues: bool = Query(False, description="Only customers with an outstanding balance"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> List[CustomerOut]:
    engine = get_engine()
    with engine.connect() as conn:
        return customer_service.list_customers(conn, search, with_dues, limit, offset)


@router.post("/", response_model=CustomerOut, status_code=201)
def create_customer(body: CustomerIn) -> CustomerOut:
    engine = get_engine()
    with engine.begin() as conn:
        row = customer_service.create_customer(
            conn,
            name=body.name,
            phone=body.phone,
            email=body.email,
            address=body.address,
            credit_limit=body.credit_limit,
        )
    return customer_service.customer_out(row)


@router.get("/{customer_id}", response_model=CustomerOut)
def get_customer(customer_id: str) -> CustomerOut:
    engine = get_engine()
    with engine.connect() as conn:
        row = customer_service.find_customer(conn, customer_id)
    return customer_service.customer_out(row)


@router.patch("/{customer_id}", response_model=CustomerOut)
def update_customer(customer_id: str, body: CustomerUpdate) -> CustomerOut:
    engine = get_engine()
    with engine.begin() as conn:
        row = customer_service.update_customer(
            conn,
            customer_id,
            body.model_dump(exclude={"expected_version"}, exclude_none=True),
            expected_version=body.expected_version,
        )
    return customer_service.customer_out(row)


@router.get("/{customer_id}/invoices", response_model=InvoiceListResponse)
def list_customer_invoices(
    customer_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> InvoiceListResponse:
    engine = get_engine()
    with engine.connect() as conn:
        customer_service.find_customer(conn, customer_id)
        return invoice_service.list_invoices(conn, customer_id=customer_id, limit=limit, offset=offset)


@router.post("/{customer_id}/clear-arrears", response_model=ArrearsPaymentOut)
def clear_customer_arrears(
    customer_id: str,
    body: ArrearsPaymentIn,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> ArrearsPaymentOut:
    """
    Pay down the customer's dues, oldest invoice first.
    """
    engine = get_engine()
    with engine.begin() as conn:
        return payments.clear_arrears(
            conn,
            customer_id,
            amount=body.amount,
            payment_mode=body.payment_mode,
            payment_details=body.payment_details,
            reference_number=body.reference_number,
            notes=body.notes,
            performed_by=performed_by,
            expected_version=body.expected_version,
        )


@router.get("/{customer_id}/audit", response_model=CustomerAuditOut)
def audit_customer(customer_id: str) -> CustomerAuditOut:
    """
    Stored total_due / total_purchases next to the values recomputed from invoices.
    """
    engine = get_engine()
    with engine.connect() as conn:
        return customer_service.audit_customer(conn, customer_id)


@router.post("/{customer_id}/reconcile", response_model=ReconcileOut)
def reconcile_customer(customer_id: str) -> ReconcileOut:
    engine = get_engine()
    with engine.begin() as conn:
        return customer_service.reconcile_customer(conn, customer_id)
