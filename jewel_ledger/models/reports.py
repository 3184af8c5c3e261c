# jewel_ledger/models/reports.py

from datetime import date
from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel

from jewel_ledger.models.orders import OrderMetricsOut

AGING_BUCKETS = ("0-30", "31-60", "61-90", "90+")


class SalesTotal(BaseModel):
    total: Decimal
    count: int


class DashboardStatsOut(BaseModel):
    as_of: date
    today_sales: SalesTotal
    month_sales: SalesTotal
    cash_in_shop: Decimal
    bank_balance: Decimal
    online_payments_in: Decimal
    money_source: Dict[str, Decimal]
    money_usage: Dict[str, Decimal]
    old_gold_adjusted: Decimal
    pending_dues: Decimal
    customers_with_dues: int
    orders: OrderMetricsOut


class AgingInvoice(BaseModel):
    invoice_id: str
    invoice_number: str
    customer_id: str
    customer_name: str
    customer_phone: str
    due_amount: Decimal
    days: int


class AgingBucket(BaseModel):
    label: str
    total: Decimal
    invoices: List[AgingInvoice]


class AgingReportOut(BaseModel):
    as_of: date
    buckets: List[AgingBucket]
    total_due: Decimal
