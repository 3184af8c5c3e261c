# jewel_ledger/services/catalog.py
"""
Thin table-backed stand-ins for the product catalog and the gold-price feed.

Stock moves only through guarded UPDATEs so two concurrent sales cannot both
take the last piece.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection

from jewel_ledger.db.schema import gold_rates, products
from jewel_ledger.errors import InsufficientStock, PreconditionFailed, ValidationError
from jewel_ledger.models.common import GoldRateSnapshot
from jewel_ledger.services.common import fetch_row, new_id, now
from jewel_ledger.services.pricing import ZERO, money, require_non_negative, weight_value

logger = logging.getLogger(__name__)


def add_product(
    conn: Connection,
    sku: str,
    name: str,
    category: str = "Gold",
    purity: Optional[str] = None,
    is_weight_managed: bool = False,
    quantity: int = 0,
    available_weight=ZERO,
    purchase_price=ZERO,
    selling_price=ZERO,
):
    if not sku or not name:
        raise ValidationError("sku and name are required")
    if int(quantity) < 0:
        raise ValidationError("quantity cannot be negative")
    existing = conn.execute(select(products.c.id).where(products.c.sku == sku)).first()
    if existing is not None:
        raise PreconditionFailed(f"Product with SKU {sku} already exists")

    product_id = new_id()
    conn.execute(
        insert(products).values(
            id=product_id,
            sku=sku,
            name=name,
            category=category,
            purity=purity,
            is_weight_managed=is_weight_managed,
            quantity=int(quantity),
            available_weight=weight_value(require_non_negative(available_weight, "available weight")),
            purchase_price=money(require_non_negative(purchase_price, "purchase price")),
            selling_price=money(require_non_negative(selling_price, "selling price")),
        )
    )
    logger.info("Added product %s (%s)", sku, name)
    return get_stock(conn, product_id)


def get_stock(conn: Connection, product_id: str):
    return fetch_row(conn, products, product_id, "Product")


def _stock_draw(product, quantity, weight):
    """What a sale of ``quantity`` pieces weighing ``weight`` takes from stock."""
    if product["is_weight_managed"]:
        amount = weight_value(require_non_negative(weight, "weight"))
        if amount <= ZERO:
            raise ValidationError(f"weight is required for weight-managed product {product['sku']}")
        return products.c.available_weight, amount
    try:
        qty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be a whole number")
    if qty < 1:
        raise ValidationError("quantity must be at least 1")
    return products.c.quantity, qty


def decrement_stock(conn: Connection, product_id: str, quantity=1, weight=ZERO):
    """
    Take stock for a sale: the weight pool for weight-managed products,
    otherwise the piece count. Raises InsufficientStock without touching the row.
    """
    product = get_stock(conn, product_id)
    column, amount = _stock_draw(product, quantity, weight)

    result = conn.execute(
        update(products)
        .where(products.c.id == product_id, column >= amount)
        .values({column.name: column - amount})
    )
    if result.rowcount != 1:
        logger.warning(
            "Insufficient stock for %s: wanted %s, have %s",
            product["sku"], amount, product[column.name],
        )
        raise InsufficientStock(
            f"Insufficient stock for {product['name']} ({product['sku']}): "
            f"requested {amount}, available {product[column.name]}"
        )
    return amount


def increment_stock(conn: Connection, product_id: str, quantity=1, weight=ZERO):
    product = get_stock(conn, product_id)
    column, amount = _stock_draw(product, quantity, weight)
    conn.execute(
        update(products)
        .where(products.c.id == product_id)
        .values({column.name: column + amount})
    )
    return amount


# ---- Gold-price feed ----

def record_rates(conn: Connection, rate24K=None, rate22K=None, rate18K=None, source: str = "Manual"):
    conn.execute(
        insert(gold_rates).values(
            rate_24k=money(require_non_negative(rate24K, "rate24K")),
            rate_22k=money(require_non_negative(rate22K, "rate22K")),
            rate_18k=money(require_non_negative(rate18K, "rate18K")),
            source=source,
            recorded_at=now(),
        )
    )
    return current_rates(conn)


def current_rates(conn: Connection) -> GoldRateSnapshot:
    """Latest recorded rates; an empty snapshot when nothing was recorded yet."""
    row = conn.execute(
        select(gold_rates).order_by(gold_rates.c.recorded_at.desc(), gold_rates.c.id.desc()).limit(1)
    ).mappings().first()
    if row is None:
        return GoldRateSnapshot()
    return GoldRateSnapshot(
        rate24K=row["rate_24k"],
        rate22K=row["rate_22k"],
        rate18K=row["rate_18k"],
    )


def rate_for_purity(rates: GoldRateSnapshot, purity: Optional[str]) -> Optional[Decimal]:
    """Pick the snapshot rate matching a "22K"-style purity, if any."""
    if not purity:
        return None
    key = str(purity).strip().upper().replace(" ", "")
    return {
        "24K": rates.rate24K,
        "22K": rates.rate22K,
        "18K": rates.rate18K,
    }.get(key)
