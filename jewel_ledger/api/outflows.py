# jewel_ledger/api/outflows.py

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Header, Query

from jewel_ledger.db.engine import get_engine
from jewel_ledger.models.outflows import (
    ExpenseIn,
    ExpenseOut,
    PurchaseIn,
    PurchaseOut,
    SupplierPaymentIn,
    SupplierPaymentOut,
)
from jewel_ledger.services import outflows

router = APIRouter(tags=["outflows"])


@router.get("/expenses", response_model=List[ExpenseOut])
def list_expenses(
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    category: Optional[str] = Query(default=None),
) -> List[ExpenseOut]:
    engine = get_engine()
    with engine.connect() as conn:
        return outflows.list_expenses(conn, start, end, category)


@router.post("/expenses", response_model=ExpenseOut, status_code=201)
def create_expense(
    body: ExpenseIn,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> ExpenseOut:
    engine = get_engine()
    with engine.begin() as conn:
        row = outflows.record_expense(
            conn,
            category=body.category,
            amount=body.amount,
            description=body.description,
            payment_mode=body.payment_mode,
            spent_on=body.date,
            performed_by=performed_by,
        )
    return outflows.expense_out(row)


@router.get("/purchases", response_model=List[PurchaseOut])
def list_purchases(supplier_name: Optional[str] = Query(default=None)) -> List[PurchaseOut]:
    engine = get_engine()
    with engine.connect() as conn:
        return outflows.list_purchases(conn, supplier_name)


@router.post("/purchases", response_model=PurchaseOut, status_code=201)
def create_purchase(
    body: PurchaseIn,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> PurchaseOut:
    """
    Stock bought from a supplier. Whatever is paid now leaves the shop as one
    DEBIT entry; the balance is settled later through supplier payments.
    """
    engine = get_engine()
    with engine.begin() as conn:
        row = outflows.record_purchase(
            conn,
            supplier_name=body.supplier_name,
            total_amount=body.total_amount,
            paid_amount=body.paid_amount,
            payment_mode=body.payment_mode,
            purchased_on=body.date,
            notes=body.notes,
            performed_by=performed_by,
        )
        return outflows.load_purchase(conn, row["id"])


@router.get("/purchases/{purchase_id}", response_model=PurchaseOut)
def get_purchase(purchase_id: str) -> PurchaseOut:
    engine = get_engine()
    with engine.connect() as conn:
        return outflows.load_purchase(conn, purchase_id)


@router.get("/supplier-payments", response_model=List[SupplierPaymentOut])
def list_supplier_payments(supplier_name: Optional[str] = Query(default=None)) -> List[SupplierPaymentOut]:
    engine = get_engine()
    with engine.connect() as conn:
        return outflows.list_supplier_payments(conn, supplier_name)


@router.post("/supplier-payments", response_model=SupplierPaymentOut, status_code=201)
def create_supplier_payment(
    body: SupplierPaymentIn,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> SupplierPaymentOut:
    engine = get_engine()
    with engine.begin() as conn:
        row = outflows.record_supplier_payment(
            conn,
            supplier_name=body.supplier_name,
            amount=body.amount,
            payment_mode=body.payment_mode,
            purchase_id=body.purchase_id,
            reference_number=body.reference_number,
            notes=body.notes,
            paid_on=body.date,
            performed_by=performed_by,
        )
    return outflows.supplier_payment_out(row)
