"""FastAPI dependency injection for process-map."""

import sqlite3
from collections.abc import Generator

from fastapi import Depends, Header, HTTPException

from db.client import get_connection
from process_map.permissions import Actor, load_actor


# Module-level DB path, set by app startup
_db_path: str = ""


def set_db_path(path: str) -> None:
    """Set the database path used by the DB dependency."""
    global _db_path  # noqa: PLW0603
    _db_path = path


def get_db() -> Generator[sqlite3.Connection, None, None]:
    """FastAPI dependency that yields a DB connection per request.

    Anything left uncommitted when the handler raises is rolled back.
    """
    conn = get_connection(_db_path)
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def get_actor(
    x_user_id: str | None = Header(default=None),
    conn: sqlite3.Connection = Depends(get_db),
) -> Actor:
    """Resolve the ``X-User-Id`` header to the acting user, or 401."""
    actor = load_actor(conn, x_user_id)
    if actor is None:
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthenticated", "message": "Authentication required"},
        )
    return actor
