# scripts/backfill_ledger.py
"""
One-shot job: give every pre-existing money document its Transaction.

Safe to re-run; sources that already have their entry are skipped.

    python scripts/backfill_ledger.py
"""

import logging

from jewel_ledger import config
from jewel_ledger.db.engine import get_engine
from jewel_ledger.services.ledger import backfill_transactions

logging.basicConfig(
    level=config.log_level(),
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    engine = get_engine()
    with engine.begin() as conn:
        report = backfill_transactions(conn)

    logger.info("Documents scanned:     %s", sum(report.scanned.values()))
    logger.info("Transactions created:  %s", report.n_created)
    logger.info("Already present:       %s", sum(report.existing.values()))
    if report.n_created == 0:
        logger.info("Ledger already complete; nothing to do.")


if __name__ == "__main__":
    main()
