# jewel_ledger/models/outflows.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from jewel_ledger.models.common import PaymentMode


class ExpenseIn(BaseModel):
    category: str
    amount: Decimal
    description: str
    payment_mode: PaymentMode = PaymentMode.CASH
    date: Optional[datetime] = None


class ExpenseOut(BaseModel):
    id: str
    category: str
    amount: Decimal
    description: str
    payment_mode: str
    date: datetime
    created_by: Optional[str] = None

    class Config:
        from_attributes = True


class PurchaseIn(BaseModel):
    supplier_name: str
    total_amount: Decimal
    paid_amount: Decimal = Decimal("0")
    payment_mode: PaymentMode = PaymentMode.CASH
    date: Optional[datetime] = None
    notes: Optional[str] = None


class PurchaseOut(BaseModel):
    id: str
    supplier_name: str
    total_amount: Decimal
    paid_amount: Decimal
    # paid at purchase plus later supplier payments against it
    settled_amount: Decimal
    balance: Decimal
    payment_mode: str
    date: datetime
    notes: Optional[str] = None
    created_by: Optional[str] = None

    class Config:
        from_attributes = True


class SupplierPaymentIn(BaseModel):
    supplier_name: str
    purchase_id: Optional[str] = None
    amount: Decimal
    payment_mode: PaymentMode = PaymentMode.CASH
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[datetime] = None


class SupplierPaymentOut(BaseModel):
    id: str
    supplier_name: str
    purchase_id: Optional[str] = None
    amount: Decimal
    payment_mode: str
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    date: datetime
    created_by: Optional[str] = None

    class Config:
        from_attributes = True
