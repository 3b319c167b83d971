"""Activity log: the append-only audit trail for process-map.

Every write operation inserts exactly one activity row. The row is written
on the caller's open transaction, after the primary write, so the mutation
and its audit entry commit (or roll back) together.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

ENTITY_TYPES = (
    "component",
    "todo",
    "issue",
    "idea",
    "metric",
    "comment",
    "section",
    "snapshot",
    "connection",
)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

EntityLookup = Callable[[sqlite3.Connection, str], dict[str, Any] | None]

_ENTITY_LOOKUPS: dict[str, EntityLookup] = {}


def record_activity(
    conn: sqlite3.Connection,
    user_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    changes: dict[str, Any] | None = None,
) -> str:
    """Insert an activity row and return its ID.

    The caller manages conn.commit() so the data write and the audit
    entry are in the same transaction.

    Args:
        conn: Active SQLite connection.
        user_id: The acting user.
        action: 'created', 'updated', 'deleted' or a specialised verb such
                as 'completed', 'status_changed', 'marked_implemented'.
        entity_type: One of ENTITY_TYPES.
        entity_id: ID of the entity; may refer to a deleted row later on.
        changes: JSON-serializable dict describing what changed.

    Returns:
        The generated activity ID (UUID4).

    Raises:
        ValueError: If entity_type is not a known entity type.
    """
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Unknown entity type '{entity_type}'")

    activity_id = str(uuid.uuid4())
    now = datetime.now(timezone.utc).isoformat()
    conn.execute(
        """INSERT INTO activity_logs
           (id, user_id, action, entity_type, entity_id, changes, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            activity_id,
            user_id,
            action,
            entity_type,
            entity_id,
            json.dumps(changes or {}),
            now,
        ),
    )
    logger.debug("Recorded %s %s %s by %s", action, entity_type, entity_id, user_id)
    return activity_id


# ── Entity enrichment ─────────────────────────────────────


def register_entity_lookup(
    entity_type: str,
) -> Callable[[EntityLookup], EntityLookup]:
    """Register the minimal-fields lookup used to enrich log rows of a type."""

    def decorator(fn: EntityLookup) -> EntityLookup:
        _ENTITY_LOOKUPS[entity_type] = fn
        return fn

    return decorator


def _fetch_one(
    conn: sqlite3.Connection, query: str, entity_id: str
) -> dict[str, Any] | None:
    row = conn.execute(query, (entity_id,)).fetchone()
    return dict(row) if row is not None else None


@register_entity_lookup("component")
def _component_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, title FROM components WHERE id = ?", entity_id)


@register_entity_lookup("todo")
def _todo_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, title FROM todos WHERE id = ?", entity_id)


@register_entity_lookup("issue")
def _issue_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, title FROM issues WHERE id = ?", entity_id)


@register_entity_lookup("idea")
def _idea_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, title FROM ideas WHERE id = ?", entity_id)


@register_entity_lookup("metric")
def _metric_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, name FROM metrics WHERE id = ?", entity_id)


@register_entity_lookup("comment")
def _comment_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, content FROM comments WHERE id = ?", entity_id)


@register_entity_lookup("section")
def _section_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, name FROM sections WHERE id = ?", entity_id)


@register_entity_lookup("snapshot")
def _snapshot_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, name FROM snapshots WHERE id = ?", entity_id)


@register_entity_lookup("connection")
def _connection_details(conn: sqlite3.Connection, entity_id: str) -> dict[str, Any] | None:
    return _fetch_one(conn, "SELECT id, label FROM connections WHERE id = ?", entity_id)


def get_entity_details(
    conn: sqlite3.Connection, entity_type: str, entity_id: str
) -> dict[str, Any] | None:
    """Best-effort lookup of an entity's display fields.

    Returns None when no lookup is registered for the type, or when the
    entity no longer exists (logged as a warning, never raised).
    """
    lookup = _ENTITY_LOOKUPS.get(entity_type)
    if lookup is None:
        return None
    try:
        details = lookup(conn, entity_id)
    except sqlite3.Error:
        logger.warning(
            "Entity lookup failed for %s:%s", entity_type, entity_id, exc_info=True
        )
        return None
    if details is None:
        logger.warning(
            "Could not fetch entity details for %s:%s", entity_type, entity_id
        )
    return details


# ── Read path ─────────────────────────────────────────────


def clamp_limit(limit: int | None) -> int:
    """Apply the default page size and the hard per-page maximum."""
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return max(0, min(limit, MAX_PAGE_SIZE))


def list_activity(
    conn: sqlite3.Connection,
    user_id: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    limit: int | None = None,
    offset: int = 0,
    include_details: bool = True,
) -> dict[str, Any]:
    """Return a page of activity rows, newest first, with pagination info."""
    clauses: list[str] = []
    params: list[Any] = []
    if user_id:
        clauses.append("a.user_id = ?")
        params.append(user_id)
    if entity_type:
        clauses.append("a.entity_type = ?")
        params.append(entity_type)
    if entity_id:
        clauses.append("a.entity_id = ?")
        params.append(entity_id)
    if action:
        clauses.append("a.action = ?")
        params.append(action)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    page_size = clamp_limit(limit)
    offset = max(0, offset)

    total = conn.execute(
        f"SELECT COUNT(*) AS cnt FROM activity_logs a {where}",  # noqa: S608
        params,
    ).fetchone()["cnt"]

    rows = conn.execute(
        f"""SELECT a.*,
                   u.name AS user_name,
                   u.email AS user_email
            FROM activity_logs a
            LEFT JOIN users u ON a.user_id = u.id
            {where}
            ORDER BY a.created_at DESC, a.rowid DESC
            LIMIT ? OFFSET ?""",  # noqa: S608
        [*params, page_size, offset],
    ).fetchall()

    activities = []
    for row in rows:
        activity = {
            "id": row["id"],
            "user_id": row["user_id"],
            "action": row["action"],
            "entity_type": row["entity_type"],
            "entity_id": row["entity_id"],
            "changes": json.loads(row["changes"]),
            "created_at": row["created_at"],
            "user": {
                "id": row["user_id"],
                "name": row["user_name"],
                "email": row["user_email"],
            },
        }
        if include_details:
            activity["entity_details"] = get_entity_details(
                conn, row["entity_type"], row["entity_id"]
            )
        activities.append(activity)

    return {
        "activities": activities,
        "pagination": {
            "total": total,
            "limit": page_size,
            "offset": offset,
            "has_more": offset + len(activities) < total,
        },
    }
