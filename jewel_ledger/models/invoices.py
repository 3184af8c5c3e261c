# jewel_ledger/models/invoices.py

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from jewel_ledger.models.common import (
    GoldRateSnapshot, InvoiceStatus, MetalCategory, PaymentDetails, PaymentMode,
)


class InvoiceItemIn(BaseModel):
    product_id: Optional[str] = None
    description: Optional[str] = None
    quantity: int = 1
    weight: Decimal = Decimal("0")
    rate: Decimal = Decimal("0")
    making_charge: Decimal = Decimal("0")
    wastage: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    old_gold_adjustment: Decimal = Decimal("0")
    gst: Decimal = Decimal("0")
    details: Optional[Dict[str, Any]] = None


class ExchangeItemIn(BaseModel):
    description: Optional[str] = None
    category: MetalCategory = MetalCategory.GOLD
    weight: Decimal
    purity: str
    rate: Decimal
    # agreed value at the counter; computed from weight, rate and purity when omitted
    amount: Optional[Decimal] = None


class InvoiceCreate(BaseModel):
    customer_id: str
    items: List[InvoiceItemIn]
    discount: Decimal = Decimal("0")
    exchange_items: List[ExchangeItemIn] = Field(default_factory=list)
    exchange_record_ids: List[str] = Field(default_factory=list)
    payment_mode: PaymentMode = PaymentMode.CASH
    paid_amount: Optional[Decimal] = None
    payment_details: Optional[PaymentDetails] = None
    gold_rate: Optional[GoldRateSnapshot] = None
    notes: Optional[str] = None


class InvoicePaymentIn(BaseModel):
    amount: Decimal
    payment_mode: PaymentMode = PaymentMode.CASH
    payment_details: Optional[PaymentDetails] = None
    expected_version: Optional[int] = None


class InvoiceItemOut(BaseModel):
    id: str
    line_no: int
    product_id: Optional[str] = None
    description: Optional[str] = None
    quantity: int
    weight: Decimal
    rate: Decimal
    purchase_rate: Decimal
    making_charge: Decimal
    wastage: Decimal
    discount: Decimal
    old_gold_adjustment: Decimal
    gst: Decimal
    subtotal: Decimal
    line_total: Decimal
    details: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class InvoicePaymentOut(BaseModel):
    id: str
    kind: str
    amount: Decimal
    payment_mode: str
    details: PaymentDetails
    customer_payment_id: Optional[str] = None
    performed_by: Optional[str] = None
    created_at: datetime


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    customer_id: str
    customer_name: Optional[str] = None
    order_id: Optional[str] = None
    items: List[InvoiceItemOut]
    subtotal: Decimal
    gst: Decimal
    discount: Decimal
    exchange_amount: Decimal
    total: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    payment_mode: str
    payment_details: PaymentDetails
    status: InvoiceStatus
    cancelled: bool
    gold_rate: GoldRateSnapshot
    exchange_record_ids: List[str] = Field(default_factory=list)
    payments: List[InvoicePaymentOut] = Field(default_factory=list)
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    version: int

    class Config:
        from_attributes = True


class InvoiceSummaryOut(BaseModel):
    id: str
    invoice_number: str
    customer_id: str
    customer_name: str
    total: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    payment_mode: str
    status: InvoiceStatus
    cancelled: bool
    created_at: datetime


class InvoiceListResponse(BaseModel):
    items: List[InvoiceSummaryOut]
    total: int
    limit: int
    offset: int
