# jewel_ledger/api/old_gold.py

from typing import List, Optional

from fastapi import APIRouter, Header, Query

from jewel_ledger.db.engine import get_engine
from jewel_ledger.models.common import OldGoldStatus
from jewel_ledger.models.old_gold import OldGoldAdjustIn, OldGoldAdjustOut, OldGoldCreate, OldGoldOut
from jewel_ledger.services import exchange

router = APIRouter(prefix="/old-gold", tags=["old-gold"])


@router.get("/", response_model=List[OldGoldOut])
def list_old_gold(
    status: Optional[OldGoldStatus] = Query(default=None),
    customer_id: Optional[str] = Query(default=None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> List[OldGoldOut]:
    engine = get_engine()
    with engine.connect() as conn:
        return exchange.list_old_gold(conn, status, customer_id, limit, offset)


@router.post("/", response_model=OldGoldOut, status_code=201)
def create_old_gold(
    body: OldGoldCreate,
    performed_by: Optional[str] = Header(default=None, alias="X-Performed-By"),
) -> OldGoldOut:
    """
    Value old metal brought in by a customer. With ``payout_mode`` the shop
    pays for it now; otherwise it is held as credit for a later invoice.
    """
    engine = get_engine()
    with engine.begin() as conn:
        record = exchange.create_old_gold_record(
            conn,
            customer_id=body.customer_id,
            weight=body.weight,
            purity=body.purity,
            rate=body.rate,
            category=body.category,
            description=body.description,
            payout_mode=body.payout_mode,
            purity_tested=body.purity_tested,
            test_notes=body.test_notes,
            notes=body.notes,
            performed_by=performed_by,
        )
        return exchange.load_old_gold(conn, record["id"])


@router.get("/{record_id}", response_model=OldGoldOut)
def get_old_gold(record_id: str) -> OldGoldOut:
    engine = get_engine()
    with engine.connect() as conn:
        return exchange.load_old_gold(conn, record_id)


@router.post("/{record_id}/adjust", response_model=OldGoldAdjustOut)
def adjust_old_gold(record_id: str, body: OldGoldAdjustIn) -> OldGoldAdjustOut:
    engine = get_engine()
    with engine.begin() as conn:
        return exchange.adjust_old_gold(
            conn,
            record_id,
            invoice_id=body.invoice_id,
            amount=body.amount,
            expected_version=body.expected_version,
        )
