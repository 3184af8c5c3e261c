# jewel_ledger/services/common.py

import uuid
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from sqlalchemy import Table, insert, select, update
from sqlalchemy.engine import Connection

from jewel_ledger import config
from jewel_ledger.db.schema import sequences
from jewel_ledger.errors import ConcurrencyConflict, NotFound


def new_id() -> str:
    return uuid.uuid4().hex


def now() -> datetime:
    """Shop-local wall clock, stored naive."""
    return datetime.now(config.shop_timezone()).replace(tzinfo=None)


def today() -> date:
    return now().date()


def day_bounds(start: Optional[date], end: Optional[date]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive date range -> [start 00:00, day after end 00:00)."""
    lower = datetime.combine(start, time.min) if start else None
    upper = datetime.combine(end + timedelta(days=1), time.min) if end else None
    return lower, upper


def next_number(conn: Connection, name: str, prefix: str) -> str:
    """Sequential human-readable document number, e.g. INV-000042."""
    result = conn.execute(
        update(sequences)
        .where(sequences.c.name == name)
        .values(value=sequences.c.value + 1)
    )
    if result.rowcount == 0:
        conn.execute(insert(sequences).values(name=name, value=1))
    value = conn.execute(
        select(sequences.c.value).where(sequences.c.name == name)
    ).scalar_one()
    return f"{prefix}{value:06d}"


def fetch_row(conn: Connection, table: Table, row_id: str, label: str):
    row = conn.execute(select(table).where(table.c.id == row_id)).mappings().first()
    if row is None:
        raise NotFound(f"{label} not found")
    return row


def check_expected_version(row, expected_version: Optional[int], label: str) -> None:
    if expected_version is not None and row["version"] != expected_version:
        raise ConcurrencyConflict(
            f"{label} changed since it was read (version {expected_version}, now {row['version']}); reload and retry"
        )


def guarded_update(conn: Connection, table: Table, row, values: dict, label: str) -> int:
    """
    Compare-and-swap on the version read earlier in this unit of work.

    Returns the new version.
    """
    new_version = row["version"] + 1
    result = conn.execute(
        update(table)
        .where(table.c.id == row["id"], table.c.version == row["version"])
        .values(version=new_version, **values)
    )
    if result.rowcount != 1:
        raise ConcurrencyConflict(f"{label} was modified concurrently; reload and retry")
    return new_version
