# jewel_ledger/api/dashboard.py

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query

from jewel_ledger.db.engine import get_engine
from jewel_ledger.models.ledger import CashLedgerOut
from jewel_ledger.models.reports import AgingReportOut, DashboardStatsOut
from jewel_ledger.services import ledger, reports

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard/stats", response_model=DashboardStatsOut)
def dashboard_stats(as_of: Optional[date] = Query(default=None)) -> DashboardStatsOut:
    engine = get_engine()
    with engine.connect() as conn:
        return reports.dashboard_stats(conn, as_of)


@router.get("/dashboard/cash-ledger", response_model=CashLedgerOut)
def cash_ledger(
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    payment_mode: Optional[str] = Query(default=None),
    detail_limit: Optional[int] = Query(default=50, ge=0),
) -> CashLedgerOut:
    """
    Inflows, outflows and old-metal adjustments for the range. Totals cover
    every entry; ``detail_limit`` only trims the listed details.
    """
    engine = get_engine()
    with engine.connect() as conn:
        return ledger.project_cash_ledger(conn, start, end, payment_mode, detail_limit)


@router.get("/reports/aging", response_model=AgingReportOut)
def aging_report(as_of: Optional[date] = Query(default=None)) -> AgingReportOut:
    engine = get_engine()
    with engine.connect() as conn:
        return reports.aging_report(conn, as_of)
