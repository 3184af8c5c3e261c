# jewel_ledger/models/old_gold.py

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from jewel_ledger.models.common import InvoiceStatus, MetalCategory, OldGoldStatus, PaymentMode


class OldGoldCreate(BaseModel):
    customer_id: str
    category: MetalCategory = MetalCategory.GOLD
    description: Optional[str] = None
    weight: Decimal
    purity: str
    rate: Decimal
    # set when the shop pays the customer for the metal instead of holding it as credit
    payout_mode: Optional[PaymentMode] = None
    purity_tested: bool = False
    test_notes: Optional[str] = None
    notes: Optional[str] = None


class OldGoldAdjustIn(BaseModel):
    invoice_id: str
    amount: Decimal
    expected_version: Optional[int] = None


class AdjustedAgainstOut(BaseModel):
    invoice_id: str
    invoice_number: Optional[str] = None
    amount: Decimal
    adjusted_at: Optional[datetime] = None


class OldGoldOut(BaseModel):
    id: str
    customer_id: str
    category: MetalCategory
    description: Optional[str] = None
    weight: Decimal
    purity: str
    rate: Decimal
    total_value: Decimal
    status: OldGoldStatus
    adjusted_against: Optional[AdjustedAgainstOut] = None
    payout_mode: Optional[str] = None
    purity_tested: bool
    test_notes: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    version: int

    class Config:
        from_attributes = True


class OldGoldAdjustOut(BaseModel):
    record: OldGoldOut
    invoice_id: str
    invoice_number: str
    invoice_due_after: Decimal
    invoice_status: InvoiceStatus
    transaction_id: str
