# jewel_ledger/models/ledger.py

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel

from jewel_ledger.models.common import TransactionCategory, TransactionType


class ReferenceOut(BaseModel):
    model: str
    id: str


class TransactionOut(BaseModel):
    id: str
    type: TransactionType
    category: TransactionCategory
    amount: Decimal
    payment_mode: str
    description: Optional[str] = None
    reference: ReferenceOut
    reference_label: Optional[str] = None
    date: datetime
    performed_by: Optional[str] = None

    class Config:
        from_attributes = True


class CategoryTotal(BaseModel):
    category: TransactionCategory
    amount: Decimal
    count: int


class LedgerSide(BaseModel):
    total: Decimal
    by_category: List[CategoryTotal]
    details: List[TransactionOut]


class CashTotals(BaseModel):
    cash_in: Decimal
    cash_out: Decimal
    net_cash: Decimal
    # old metal netted against receivables; never part of net_cash
    adjustments: Decimal


class CashLedgerOut(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None
    payment_mode: Optional[str] = None
    totals: CashTotals
    inflows: LedgerSide
    outflows: LedgerSide
    adjustments: LedgerSide


class BackfillReport(BaseModel):
    scanned: Dict[str, int]
    created: Dict[str, int]
    existing: Dict[str, int]

    @property
    def n_created(self) -> int:
        return sum(self.created.values())
