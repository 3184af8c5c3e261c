# jewel_ledger/services/pricing.py
"""
Pure pricing helpers for invoice lines, order lines and old-metal valuation.

No DB access here. All arithmetic is Decimal; stored amounts are rounded to
the smallest currency unit with ROUND_HALF_UP.
"""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from jewel_ledger.config import MONEY_QUANT, WEIGHT_QUANT
from jewel_ledger.errors import ValidationError

ZERO = Decimal("0")
HUNDRED = Decimal("100")
THOUSAND = Decimal("1000")

_KARAT_RE = re.compile(r"^\d{1,2}\s*(k|kt|karat|carat)$", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^\d+(\.\d+)?$")


# ---- Conversions ----

def to_decimal(value, field: str = "amount") -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        # go through str so 0.1 stays 0.1
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def weight_value(value) -> Decimal:
    return to_decimal(value, "weight").quantize(WEIGHT_QUANT, rounding=ROUND_HALF_UP)


def require_non_negative(value, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount < ZERO:
        raise ValidationError(f"{field} cannot be negative")
    return amount


def require_positive(value, field: str = "amount") -> Decimal:
    amount = money(value)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be greater than zero")
    return amount


# ---- Invoice lines ----

@dataclass(frozen=True)
class LineAmounts:
    subtotal: Decimal
    gst: Decimal
    line_total: Decimal


def price_line(
    rate,
    weight,
    making_charge=ZERO,
    wastage=ZERO,
    discount=ZERO,
    old_gold_adjustment=ZERO,
    gst=ZERO,
) -> LineAmounts:
    """
    subtotal  = rate * weight + making + wastage - discount - old_gold_adjustment
    line_total = subtotal + gst
    """
    rate = require_non_negative(rate, "rate")
    weight = require_non_negative(weight, "weight")
    making_charge = require_non_negative(making_charge, "making charge")
    wastage = require_non_negative(wastage, "wastage")
    discount = require_non_negative(discount, "discount")
    old_gold_adjustment = require_non_negative(old_gold_adjustment, "old gold adjustment")
    gst = require_non_negative(gst, "gst")

    subtotal = money(rate * weight + making_charge + wastage - discount - old_gold_adjustment)
    if subtotal < ZERO:
        raise ValidationError("line discount and old gold adjustment exceed the line value")
    gst = money(gst)
    return LineAmounts(subtotal=subtotal, gst=gst, line_total=subtotal + gst)


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    gst: Decimal
    discount: Decimal
    exchange_amount: Decimal
    total: Decimal
    # how far below zero the raw total went; total itself is clamped at zero
    shortfall: Decimal


def document_total(lines: Iterable[LineAmounts], discount=ZERO, exchange_total=ZERO) -> DocumentTotals:
    """
    total = sum(line_total) - discount - exchange_total, clamped at zero.

    Callers decide what a non-zero ``shortfall`` means; invoices reject it.
    """
    discount = money(require_non_negative(discount, "discount"))
    exchange_total = money(require_non_negative(exchange_total, "exchange amount"))

    subtotal = ZERO
    gst = ZERO
    for line in lines:
        subtotal += line.subtotal
        gst += line.gst

    raw = subtotal - discount - exchange_total + gst
    total = raw if raw > ZERO else ZERO
    return DocumentTotals(
        subtotal=money(subtotal),
        gst=money(gst),
        discount=discount,
        exchange_amount=exchange_total,
        total=money(total),
        shortfall=money(total - raw),
    )


# ---- Order lines ----

def order_line_total(price, quantity, making_charge=ZERO, wastage=ZERO, discount=ZERO) -> Decimal:
    """price * quantity + making + wastage - discount, never negative."""
    price = require_non_negative(price, "price")
    making_charge = require_non_negative(making_charge, "making charge")
    wastage = require_non_negative(wastage, "wastage")
    discount = require_non_negative(discount, "discount")
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be a whole number")
    if qty < 1:
        raise ValidationError("quantity must be at least 1")

    total = money(price * qty + making_charge + wastage - discount)
    if total < ZERO:
        raise ValidationError("discount exceeds the item value")
    return total


# ---- Old metal ----

def purity_factor(purity) -> Decimal:
    """
    Multiplier applied to weight * rate.

    "22K"-style purities mean the rate is already quoted for that karat (1).
    "91.6" / "91.6%" is a percentage; "925" style fineness is per mille.
    """
    if purity is None:
        raise ValidationError("purity is required")
    text = str(purity).strip()
    if not text:
        raise ValidationError("purity is required")
    if _KARAT_RE.match(text):
        return Decimal("1")

    is_percent = text.endswith("%")
    number = text.rstrip("%").strip()
    if not _NUMBER_RE.match(number):
        raise ValidationError(f"unrecognised purity {purity!r}")
    value = Decimal(number)
    if value <= ZERO:
        raise ValidationError("purity must be greater than zero")
    if is_percent or value <= HUNDRED:
        if value > HUNDRED:
            raise ValidationError("purity percentage cannot exceed 100")
        return value / HUNDRED
    if value <= THOUSAND:
        return value / THOUSAND
    raise ValidationError(f"unrecognised purity {purity!r}")


def old_gold_value(weight, rate, purity) -> Decimal:
    """totalValue = weight * rate * purity factor."""
    weight = require_non_negative(weight, "weight")
    rate = require_non_negative(rate, "rate")
    if weight == ZERO:
        raise ValidationError("weight must be greater than zero")
    return money(weight * rate * purity_factor(purity))
