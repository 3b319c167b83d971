"""Schema creation for process-map.

All DDL uses IF NOT EXISTS, so applying it again is a no-op. The schema
version is stamped into ``PRAGMA user_version``.

Can be run directly:
    python -m db.migrations [db_path]
"""

import logging
import sqlite3
import sys
from pathlib import Path

from db.client import get_connection
from db.schema import INDEXES, TABLE_CREATION_ORDER, TABLES

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes in dependency order. Idempotent."""
    before = schema_version(conn)
    with conn:
        for table_name in TABLE_CREATION_ORDER:
            conn.execute(TABLES[table_name])
        for statement in INDEXES:
            conn.execute(statement)
    if before != SCHEMA_VERSION:
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        logger.info("Schema upgraded from version %d to %d", before, SCHEMA_VERSION)


def init_db(db_path: str | Path) -> sqlite3.Connection:
    """Open a connection, run migrations, and return the ready connection."""
    conn = get_connection(db_path)
    run_migrations(conn)
    return conn


def main() -> None:
    db_path = sys.argv[1] if len(sys.argv) > 1 else "process-map.db"

    conn = init_db(db_path)
    tables = [
        row[0]
        for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        ).fetchall()
    ]
    print(f"{db_path}: schema v{schema_version(conn)}, {len(tables)} tables")
    print("  " + ", ".join(tables))
    conn.close()


if __name__ == "__main__":
    main()
