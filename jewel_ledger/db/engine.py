# jewel_ledger/db/engine.py

from typing import Dict

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from jewel_ledger import config

_engines: Dict[str, Engine] = {}


def _enable_sqlite_foreign_keys(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON;")
    cur.close()


def get_engine() -> Engine:
    url = config.db_url()
    engine = _engines.get(url)
    if engine is None:
        # JEWEL_LEDGER_SQL_ECHO=1 if you want to see SQL printed in the terminal
        engine = create_engine(url, future=True, echo=config.sql_echo())
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        _engines[url] = engine
    return engine


def reset_engines() -> None:
    """Dispose every cached engine (tests switch databases between runs)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
