"""
Apply pending schema migrations to the machine registry database.

Run once per deploy, before starting the API server.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy import create_engine

from fleet_backend.config import get_settings
from fleet_backend.migrations import apply_migrations, pending_migrations

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Machine registry migrations")
    parser.add_argument(
        "--database-url",
        type=str,
        default=None,
        help="Override DATABASE_URL",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List pending migrations without applying them",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    database_url = args.database_url or get_settings().database_url
    if not database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    engine = create_engine(database_url, future=True)
    try:
        if args.dry_run:
            for migration in pending_migrations(engine):
                logger.info("Pending %s: %s", migration.version, migration.description)
            return 0
        applied = apply_migrations(engine)
        logger.info("Applied %d migrations", len(applied))
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
