# jewel_ledger/models/common.py

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class PaymentMode(str, Enum):
    CASH = "Cash"
    UPI = "UPI"
    CARD = "Card"
    BANK = "Bank Transfer"
    CHEQUE = "Cheque"
    EXCHANGE = "Exchange"
    SPLIT = "Split"
    CREDIT = "Credit"


class InvoiceStatus(str, Enum):
    PENDING = "Pending"
    PARTIAL = "Partial"
    PAID = "Paid"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    READY = "READY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class OrderPaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    ADVANCE_PAID = "ADVANCE_PAID"
    FULL_PAID = "FULL_PAID"


class OrderPaymentMethod(str, Enum):
    CASH = "CASH"
    UPI = "UPI"
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    OTHER = "OTHER"


class OrderPaymentType(str, Enum):
    ADVANCE = "ADVANCE"
    PARTIAL = "PARTIAL"
    FINAL = "FINAL"


class OldGoldStatus(str, Enum):
    PENDING = "Pending"
    ADJUSTED = "Adjusted"
    PAID_OUT = "PaidOut"


class MetalCategory(str, Enum):
    GOLD = "Gold"
    SILVER = "Silver"
    PLATINUM = "Platinum"
    OTHER = "Other"


class TransactionType(str, Enum):
    CREDIT = "CREDIT"  # money in
    DEBIT = "DEBIT"  # money out
    ADJUSTMENT = "ADJUSTMENT"  # non-cash netting, reported but never summed as cash


class TransactionCategory(str, Enum):
    SALES = "SALES"
    PURCHASE = "PURCHASE"
    EXPENSE = "EXPENSE"
    SUPPLIER_PAYMENT = "SUPPLIER_PAYMENT"
    CUSTOMER_PAYMENT = "CUSTOMER_PAYMENT"
    OLD_GOLD = "OLD_GOLD"
    ORDER_ADVANCE = "ORDER_ADVANCE"


class PaymentDetails(BaseModel):
    """Per-bucket settlement breakdown. ``exchange`` is old metal, not cash."""

    cash: Decimal = Decimal("0")
    upi: Decimal = Decimal("0")
    card: Decimal = Decimal("0")
    bank: Decimal = Decimal("0")
    exchange: Decimal = Decimal("0")


class GoldRateSnapshot(BaseModel):
    rate24K: Optional[Decimal] = None
    rate22K: Optional[Decimal] = None
    rate18K: Optional[Decimal] = None
