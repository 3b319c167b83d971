"""SQLite connection factory for process-map.

Foreign keys must be on for component deletes to cascade to metrics,
todos, issues, ideas, comments and connections. Connections are opened
once per request and may be used from any worker thread FastAPI picks,
but never from two threads at once.
"""

import sqlite3
from pathlib import Path

BUSY_TIMEOUT_MS = 5000


def get_connection(db_path: str | Path) -> sqlite3.Connection:
    """Open a connection with WAL journaling, foreign keys and Row results."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    for pragma in (
        "journal_mode=WAL",
        "foreign_keys=ON",
        f"busy_timeout={BUSY_TIMEOUT_MS}",
    ):
        conn.execute(f"PRAGMA {pragma}")
    return conn
