# jewel_ledger/models/catalog.py

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class ProductIn(BaseModel):
    sku: str
    name: str
    category: str = "Gold"
    purity: Optional[str] = None
    is_weight_managed: bool = False
    quantity: int = 0
    available_weight: Decimal = Decimal("0")
    purchase_price: Decimal = Decimal("0")
    selling_price: Decimal = Decimal("0")


class ProductOut(BaseModel):
    id: str
    sku: str
    name: str
    category: str
    purity: Optional[str] = None
    is_weight_managed: bool
    quantity: int
    available_weight: Decimal
    purchase_price: Decimal
    selling_price: Decimal

    class Config:
        from_attributes = True


class GoldRatesIn(BaseModel):
    rate24K: Optional[Decimal] = None
    rate22K: Optional[Decimal] = None
    rate18K: Optional[Decimal] = None
    source: str = "Manual"
