"""Role checks for process-map.

Who the acting user is comes from outside (an HTTP header, the MCP
server's --user-id). These helpers only look the user up and decide what
their role allows. Checks return an error dict, or None when allowed.
"""

import sqlite3
from dataclasses import dataclass
from typing import Any

ROLES = ("ADMIN", "MANAGER", "VIEWER")
EDITOR_ROLES = ("ADMIN", "MANAGER")


@dataclass(frozen=True)
class Actor:
    """The authenticated user performing an operation."""

    id: str
    role: str
    name: str = ""


def load_actor(conn: sqlite3.Connection, user_id: str | None) -> Actor | None:
    """Resolve a user id to an Actor, or None if it does not exist."""
    if not user_id:
        return None
    row = conn.execute(
        "SELECT id, name, role FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    if row is None:
        return None
    return Actor(id=row["id"], role=row["role"], name=row["name"])


def require_actor(actor: Actor | None) -> dict[str, Any] | None:
    if actor is None:
        return {"error": "unauthenticated", "message": "Authentication required"}
    return None


def require_editor(actor: Actor | None) -> dict[str, Any] | None:
    """Only ADMIN and MANAGER may create, update or delete tracked entities."""
    missing = require_actor(actor)
    if missing is not None:
        return missing
    if actor.role not in EDITOR_ROLES:
        return {"error": "forbidden", "message": "Insufficient permissions"}
    return None


def require_comment_owner(
    actor: Actor | None, author_id: str
) -> dict[str, Any] | None:
    """Comments may be changed by their author or by any ADMIN/MANAGER."""
    missing = require_actor(actor)
    if missing is not None:
        return missing
    if actor.id != author_id and actor.role not in EDITOR_ROLES:
        return {"error": "forbidden", "message": "Insufficient permissions"}
    return None
