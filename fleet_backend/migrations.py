"""
Versioned schema migrations for the SQL machine store.

Migrations run once per database at deploy time (see ``scripts/migrate_db.py``),
never on application start. Each applied version is recorded in the
``schema_migrations`` table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import Column, DateTime, MetaData, String, Table, inspect, text
from sqlalchemy.engine import Connection, Engine

from fleet_backend.db import MachineRow

logger = logging.getLogger(__name__)

LEGACY_GPIO_INDEX = "pi_1_gpio_1"

_metadata = MetaData()

schema_migrations = Table(
    "schema_migrations",
    _metadata,
    Column("version", String, primary_key=True),
    Column("applied_at", DateTime(timezone=True), nullable=False),
)


@dataclass(frozen=True)
class Migration:
    version: str
    description: str
    apply: Callable[[Connection], None]


def _create_machines(conn: Connection) -> None:
    MachineRow.__table__.create(conn, checkfirst=True)


def _drop_legacy_gpio_index(conn: Connection) -> None:
    indexes = {
        index["name"]
        for index in inspect(conn).get_indexes(MachineRow.__tablename__)
    }
    if LEGACY_GPIO_INDEX not in indexes:
        logger.info("Legacy index %s not present", LEGACY_GPIO_INDEX)
        return
    conn.execute(text(f"DROP INDEX {LEGACY_GPIO_INDEX}"))
    logger.info("Dropped legacy index %s", LEGACY_GPIO_INDEX)


MIGRATIONS: list[Migration] = [
    Migration("0001", "create machines table", _create_machines),
    Migration("0002", "drop legacy pi/gpio index", _drop_legacy_gpio_index),
]


def applied_versions(engine: Engine) -> set[str]:
    schema_migrations.create(engine, checkfirst=True)
    with engine.connect() as conn:
        rows = conn.execute(schema_migrations.select()).fetchall()
    return {row.version for row in rows}


def pending_migrations(engine: Engine) -> list[Migration]:
    done = applied_versions(engine)
    return [migration for migration in MIGRATIONS if migration.version not in done]


def apply_migrations(engine: Engine) -> list[str]:
    """
    Apply every pending migration in order, each in its own transaction.

    Returns:
        list[str]: the versions applied by this call.
    """
    applied: list[str] = []
    for migration in pending_migrations(engine):
        logger.info(
            "Applying migration %s: %s", migration.version, migration.description
        )
        with engine.begin() as conn:
            migration.apply(conn)
            conn.execute(
                schema_migrations.insert().values(
                    version=migration.version,
                    applied_at=datetime.now(timezone.utc),
                )
            )
        applied.append(migration.version)
    return applied
