# jewel_ledger/config.py

import os
from decimal import Decimal
from zoneinfo import ZoneInfo

DEFAULT_DB_URL = "sqlite:///db.sqlite"  # file in project root
DEFAULT_TIMEZONE = "Asia/Kolkata"

# smallest currency unit (paise)
MONEY_QUANT = Decimal("0.01")
WEIGHT_QUANT = Decimal("0.001")

INVOICE_PREFIX = "INV-"
ORDER_PREFIX = "ORD-"


def db_url() -> str:
    return os.getenv("JEWEL_LEDGER_DB_URL", DEFAULT_DB_URL)


def sql_echo() -> bool:
    return os.getenv("JEWEL_LEDGER_SQL_ECHO", "").lower() in ("1", "true", "yes")


def log_level() -> str:
    return os.getenv("JEWEL_LEDGER_LOG_LEVEL", "INFO").upper()


def shop_timezone() -> ZoneInfo:
    return ZoneInfo(os.getenv("JEWEL_LEDGER_TIMEZONE", DEFAULT_TIMEZONE))
