# scripts/init_db.py

import argparse
import logging

from jewel_ledger import config
from jewel_ledger.db.engine import get_engine
from jewel_ledger.db.schema import metadata

logging.basicConfig(
    level=config.log_level(),
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Create the settlement database schema.")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="drop every table first (destroys all data)",
    )
    args = parser.parse_args()

    engine = get_engine()
    if args.reset:
        logger.warning("Dropping all tables on %s", engine.url)
        metadata.drop_all(engine)
    metadata.create_all(engine)
    logger.info("DB schema created on %s", engine.url)


if __name__ == "__main__":
    main()
