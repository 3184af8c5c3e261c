# jewel_ledger/models/customers.py

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr

from jewel_ledger.models.common import InvoiceStatus, PaymentDetails, PaymentMode


class CustomerIn(BaseModel):
    name: str
    phone: str
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    credit_limit: Decimal = Decimal("0")


class CustomerUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    credit_limit: Optional[Decimal] = None
    expected_version: Optional[int] = None


class CustomerOut(BaseModel):
    id: str
    name: str
    phone: str
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    credit_limit: Decimal
    total_due: Decimal
    total_purchases: Decimal
    version: int
    created_at: datetime

    class Config:
        from_attributes = True


class CustomerAuditOut(BaseModel):
    customer_id: str
    stored_total_due: Decimal
    recomputed_total_due: Decimal
    stored_total_purchases: Decimal
    recomputed_total_purchases: Decimal
    open_invoices: int
    consistent: bool


class ReconcileOut(BaseModel):
    before: CustomerAuditOut
    after: CustomerAuditOut
    changed: bool


class ArrearsPaymentIn(BaseModel):
    amount: Decimal
    payment_mode: PaymentMode = PaymentMode.CASH
    payment_details: Optional[PaymentDetails] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ArrearsAllocationOut(BaseModel):
    invoice_id: str
    invoice_number: str
    amount: Decimal
    due_after: Decimal
    status: InvoiceStatus
    invoice_payment_id: str
    transaction_id: str


class ArrearsPaymentOut(BaseModel):
    customer_payment_id: str
    customer_id: str
    amount: Decimal
    payment_mode: str
    allocations: List[ArrearsAllocationOut]
    total_due_after: Decimal
