# jewel_ledger/models/orders.py

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from jewel_ledger.models.common import (
    OrderPaymentMethod, OrderPaymentStatus, OrderPaymentType, OrderStatus,
)
from jewel_ledger.models.invoices import InvoiceOut


class OrderItemIn(BaseModel):
    product_id: Optional[str] = None
    is_custom: bool = False
    name: Optional[str] = None
    quantity: int = 1
    price: Decimal
    weight: Decimal = Decimal("0")
    purity: Optional[str] = None
    making_charge: Decimal = Decimal("0")
    wastage: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    # custom (made-to-order) pieces
    target_weight: Optional[str] = None
    size: Optional[str] = None
    item_type: Optional[str] = None
    special_instructions: Optional[str] = None
    design_image: Optional[str] = None


class OrderCreate(BaseModel):
    customer_id: str
    items: List[OrderItemIn]
    advance_amount: Decimal = Decimal("0")
    payment_method: OrderPaymentMethod = OrderPaymentMethod.CASH
    expected_delivery_date: date
    notes: Optional[str] = None


class OrderPaymentIn(BaseModel):
    amount: Decimal
    method: OrderPaymentMethod = OrderPaymentMethod.CASH
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class FinalPaymentIn(BaseModel):
    amount: Decimal
    method: OrderPaymentMethod = OrderPaymentMethod.CASH


class DeliverIn(BaseModel):
    final_payment: Optional[FinalPaymentIn] = None
    expected_version: Optional[int] = None


class OrderItemPatch(BaseModel):
    name: Optional[str] = None
    quantity: Optional[int] = None
    price: Optional[Decimal] = None
    weight: Optional[Decimal] = None
    making_charge: Optional[Decimal] = None
    wastage: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    target_weight: Optional[str] = None
    size: Optional[str] = None
    item_type: Optional[str] = None
    special_instructions: Optional[str] = None
    design_image: Optional[str] = None
    expected_version: Optional[int] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    expected_version: Optional[int] = None


class OrderItemOut(BaseModel):
    id: str
    line_no: int
    product_id: Optional[str] = None
    is_custom: bool
    name: str
    quantity: int
    price: Decimal
    weight: Decimal
    sku: Optional[str] = None
    purity: Optional[str] = None
    making_charge: Decimal
    wastage: Decimal
    discount: Decimal
    line_total: Decimal
    target_weight: Optional[str] = None
    size: Optional[str] = None
    item_type: Optional[str] = None
    special_instructions: Optional[str] = None
    design_image: Optional[str] = None

    class Config:
        from_attributes = True


class OrderPaymentOut(BaseModel):
    id: str
    amount: Decimal
    method: OrderPaymentMethod
    type: OrderPaymentType
    notes: Optional[str] = None
    performed_by: Optional[str] = None
    created_at: datetime


class OrderOut(BaseModel):
    id: str
    order_number: str
    customer_id: str
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    items: List[OrderItemOut]
    payments: List[OrderPaymentOut] = Field(default_factory=list)
    total_amount: Decimal
    advance_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    order_status: OrderStatus
    payment_status: OrderPaymentStatus
    expected_delivery_date: date
    actual_delivery_date: Optional[datetime] = None
    invoice_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    version: int

    class Config:
        from_attributes = True


class OrderSummaryOut(BaseModel):
    id: str
    order_number: str
    customer_name: str
    customer_phone: Optional[str] = None
    total_amount: Decimal
    remaining_amount: Decimal
    order_status: OrderStatus
    payment_status: OrderPaymentStatus
    expected_delivery_date: date
    created_at: datetime


class DeliveryOut(BaseModel):
    order: OrderOut
    invoice: InvoiceOut


class OrderMetricsOut(BaseModel):
    orders_today: int
    orders_month: int
    total_advance: Decimal
    pending_balance: Decimal
    near_delivery: int
    overdue: int
    status_counts: Dict[str, int]


class DeliveryAlertOut(BaseModel):
    id: str
    order_number: str
    customer_name: str
    customer_phone: Optional[str] = None
    expected_delivery_date: date
    order_status: OrderStatus
    remaining_amount: Decimal
    overdue: bool
