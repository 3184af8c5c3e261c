# jewel_ledger/api/catalog.py

from fastapi import APIRouter

from jewel_ledger.db.engine import get_engine
from jewel_ledger.models.catalog import GoldRatesIn, ProductIn, ProductOut
from jewel_ledger.models.common import GoldRateSnapshot
from jewel_ledger.services import catalog

router = APIRouter(tags=["catalog"])


@router.post("/products", response_model=ProductOut, status_code=201)
def create_product(body: ProductIn) -> ProductOut:
    engine = get_engine()
    with engine.begin() as conn:
        row = catalog.add_product(conn, **body.model_dump())
    return ProductOut(**dict(row))


@router.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str) -> ProductOut:
    engine = get_engine()
    with engine.connect() as conn:
        row = catalog.get_stock(conn, product_id)
    return ProductOut(**dict(row))


@router.get("/gold-rates/current", response_model=GoldRateSnapshot)
def current_gold_rates() -> GoldRateSnapshot:
    engine = get_engine()
    with engine.connect() as conn:
        return catalog.current_rates(conn)


@router.post("/gold-rates", response_model=GoldRateSnapshot, status_code=201)
def record_gold_rates(body: GoldRatesIn) -> GoldRateSnapshot:
    engine = get_engine()
    with engine.begin() as conn:
        return catalog.record_rates(
            conn, body.rate24K, body.rate22K, body.rate18K, source=body.source
        )
