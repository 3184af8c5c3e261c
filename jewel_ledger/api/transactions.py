# jewel_ledger/api/transactions.py

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query

from jewel_ledger.db.engine import get_engine
from jewel_ledger.models.common import TransactionCategory, TransactionType
from jewel_ledger.models.ledger import TransactionOut
from jewel_ledger.services import ledger

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("/", response_model=List[TransactionOut])
def list_transactions(
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    type: Optional[TransactionType] = Query(default=None),
    category: Optional[TransactionCategory] = Query(default=None),
    payment_mode: Optional[str] = Query(default=None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> List[TransactionOut]:
    """
    The money log, newest first, with the invoice or order number each entry points at.
    """
    engine = get_engine()
    with engine.connect() as conn:
        return ledger.list_transactions(conn, start, end, type, category, payment_mode, limit, offset)
