"""Business operations for process-map.

Each function takes a sqlite3.Connection and explicit params, returns a
dict. Failures come back as {"error": <kind>, "message": <text>} with kinds
'unauthenticated', 'forbidden', 'not_found' and 'invalid_input'; nothing is
written when an error dict is returned. The REST routes and the MCP server
both wrap these functions.

Every write runs inside ``with conn:`` so the primary write and its
activity row commit together, or roll back together if either raises.
"""

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from db.transitions import (
    HEALTH_STATUSES,
    ISSUE_STATUSES,
    PRIORITIES,
    InvalidTransitionError,
    idea_transition,
    issue_transition,
    todo_transition,
)
from process_map.activity import list_activity, record_activity
from process_map.health import (
    calculate_health_status,
    count_meeting,
    overall_health_score,
)
from process_map.layout import build_graph
from process_map.patches import (
    ComponentPatch,
    IdeaPatch,
    IssuePatch,
    MetricPatch,
    PatchError,
    SectionPatch,
    TodoPatch,
    parse_patch,
)
from process_map.permissions import (
    ROLES,
    Actor,
    require_actor,
    require_comment_owner,
    require_editor,
)

CONTENT_PREVIEW_LENGTH = 100


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid() -> str:
    return str(uuid.uuid4())


def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    return dict(row)


def _not_found(label: str, entity_id: str) -> dict[str, Any]:
    return {"error": "not_found", "message": f"{label} '{entity_id}' not found"}


def _invalid(message: str) -> dict[str, Any]:
    return {"error": "invalid_input", "message": message}


def _preview(content: str) -> str:
    return content[:CONTENT_PREVIEW_LENGTH]


def _update_row(
    conn: sqlite3.Connection, table: str, entity_id: str, fields: dict[str, Any], now: str
) -> None:
    """UPDATE whitelisted columns of one row and bump updated_at."""
    assignments = [f'"{column}" = ?' for column in fields]
    assignments.append("updated_at = ?")
    conn.execute(
        f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?",  # noqa: S608
        [*fields.values(), now, entity_id],
    )


def _user_brief(conn: sqlite3.Connection, user_id: str | None) -> dict[str, Any] | None:
    if user_id is None:
        return None
    row = conn.execute(
        "SELECT id, name, email FROM users WHERE id = ?", (user_id,)
    ).fetchone()
    return _row_to_dict(row) if row is not None else None


def _component_brief(conn: sqlite3.Connection, component_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT id, title, health_status FROM components WHERE id = ?",
        (component_id,),
    ).fetchone()
    return _row_to_dict(row) if row is not None else None


def _user_exists(conn: sqlite3.Connection, user_id: str) -> bool:
    return conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is not None


def _component_exists(conn: sqlite3.Connection, component_id: str) -> bool:
    return (
        conn.execute("SELECT 1 FROM components WHERE id = ?", (component_id,)).fetchone()
        is not None
    )


def _section_exists(conn: sqlite3.Connection, section_id: str) -> bool:
    return (
        conn.execute("SELECT 1 FROM sections WHERE id = ?", (section_id,)).fetchone()
        is not None
    )


# ── Shaping helpers ───────────────────────────────────────


def _metric_out(row: sqlite3.Row) -> dict[str, Any]:
    return _row_to_dict(row)


def _todo_out(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    todo = _row_to_dict(row)
    todo["completed"] = bool(todo["completed"])
    todo["assignee"] = _user_brief(conn, todo["assignee_id"])
    return todo


def _issue_out(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    issue = _row_to_dict(row)
    issue["reported_by"] = _user_brief(conn, issue["reported_by_id"])
    return issue


def _idea_out(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    idea = _row_to_dict(row)
    idea["implemented"] = bool(idea["implemented"])
    idea["submitted_by"] = _user_brief(conn, idea["submitted_by_id"])
    return idea


def _comment_out(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    comment = _row_to_dict(row)
    comment["author"] = _user_brief(conn, comment["author_id"])
    return comment


def _with_component(conn: sqlite3.Connection, entity: dict[str, Any]) -> dict[str, Any]:
    entity["component"] = _component_brief(conn, entity["component_id"])
    return entity


def _component_out(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    component = _row_to_dict(row)
    section = conn.execute(
        "SELECT * FROM sections WHERE id = ?", (component["section_id"],)
    ).fetchone()
    component["section"] = _row_to_dict(section) if section is not None else None
    component["owner"] = _user_brief(conn, component["owner_id"])
    return component


def _component_counts(conn: sqlite3.Connection, component_id: str) -> dict[str, int]:
    row = conn.execute(
        """SELECT
               (SELECT COUNT(*) FROM metrics WHERE component_id = :id) AS metrics,
               (SELECT COUNT(*) FROM todos WHERE component_id = :id) AS todos,
               (SELECT COUNT(*) FROM issues WHERE component_id = :id) AS issues,
               (SELECT COUNT(*) FROM ideas WHERE component_id = :id) AS ideas,
               (SELECT COUNT(*) FROM comments WHERE component_id = :id) AS comments""",
        {"id": component_id},
    ).fetchone()
    return _row_to_dict(row)


def _component_detail(conn: sqlite3.Connection, row: sqlite3.Row) -> dict[str, Any]:
    """Component with every child collection and both connection directions."""
    component = _component_out(conn, row)
    component_id = component["id"]

    component["metrics"] = [
        _metric_out(m)
        for m in conn.execute(
            'SELECT * FROM metrics WHERE component_id = ? ORDER BY "order"',
            (component_id,),
        ).fetchall()
    ]
    component["todos"] = [
        _todo_out(conn, t)
        for t in conn.execute(
            "SELECT * FROM todos WHERE component_id = ? ORDER BY created_at DESC",
            (component_id,),
        ).fetchall()
    ]
    component["issues"] = [
        _issue_out(conn, i)
        for i in conn.execute(
            "SELECT * FROM issues WHERE component_id = ? ORDER BY created_at DESC",
            (component_id,),
        ).fetchall()
    ]
    component["ideas"] = [
        _idea_out(conn, i)
        for i in conn.execute(
            "SELECT * FROM ideas WHERE component_id = ? ORDER BY votes DESC, created_at DESC",
            (component_id,),
        ).fetchall()
    ]
    component["comments"] = [
        _comment_out(conn, c)
        for c in conn.execute(
            "SELECT * FROM comments WHERE component_id = ? ORDER BY created_at DESC",
            (component_id,),
        ).fetchall()
    ]

    outgoing = conn.execute(
        "SELECT * FROM connections WHERE from_component_id = ? ORDER BY created_at",
        (component_id,),
    ).fetchall()
    component["connections_from"] = [
        {**_row_to_dict(c), "to_component": _component_brief(conn, c["to_component_id"])}
        for c in outgoing
    ]
    incoming = conn.execute(
        "SELECT * FROM connections WHERE to_component_id = ? ORDER BY created_at",
        (component_id,),
    ).fetchall()
    component["connections_to"] = [
        {**_row_to_dict(c), "from_component": _component_brief(conn, c["from_component_id"])}
        for c in incoming
    ]
    return component


# ── User tools ────────────────────────────────────────────


def list_users(conn: sqlite3.Connection) -> dict[str, Any]:
    rows = conn.execute("SELECT * FROM users ORDER BY name").fetchall()
    return {"users": [_row_to_dict(r) for r in rows]}


def create_user(
    conn: sqlite3.Connection, name: str, email: str, role: str = "VIEWER"
) -> dict[str, Any]:
    """Create a user. Identity management is not audited."""
    if not name or not email:
        return _invalid("Missing required fields: name, email")
    if role not in ROLES:
        return _invalid(f"Invalid role '{role}'. Must be one of {', '.join(ROLES)}")
    existing = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
    if existing is not None:
        return _invalid(f"User with email '{email}' already exists")

    user_id = _uuid()
    now = _now()
    with conn:
        conn.execute(
            "INSERT INTO users (id, name, email, role, created_at) VALUES (?, ?, ?, ?, ?)",
            (user_id, name, email, role, now),
        )
    return {"id": user_id, "name": name, "email": email, "role": role, "created_at": now}


# ── Section tools ─────────────────────────────────────────


def list_sections(conn: sqlite3.Connection) -> dict[str, Any]:
    """Return sections in display order, each with its components."""
    sections = []
    for section in conn.execute('SELECT * FROM sections ORDER BY "order"').fetchall():
        section_dict = _row_to_dict(section)
        components = conn.execute(
            "SELECT * FROM components WHERE section_id = ? ORDER BY created_at",
            (section["id"],),
        ).fetchall()
        section_dict["components"] = [
            {
                **_row_to_dict(c),
                "owner": _user_brief(conn, c["owner_id"]),
                "counts": _component_counts(conn, c["id"]),
            }
            for c in components
        ]
        sections.append(section_dict)
    return {"sections": sections}


def get_section(conn: sqlite3.Connection, section_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM sections WHERE id = ?", (section_id,)).fetchone()
    if row is None:
        return _not_found("Section", section_id)
    return _row_to_dict(row)


def _section_order_taken(
    conn: sqlite3.Connection, order: int, exclude_id: str | None = None
) -> bool:
    row = conn.execute(
        'SELECT id FROM sections WHERE "order" = ?', (order,)
    ).fetchone()
    return row is not None and row["id"] != exclude_id


def create_section(
    conn: sqlite3.Connection,
    actor: Actor | None,
    name: str,
    color: str | None = None,
    description: str | None = None,
    order: int | None = None,
) -> dict[str, Any]:
    """Create a section. A missing order goes after the last section."""
    denied = require_editor(actor)
    if denied:
        return denied
    if not name:
        return _invalid("Missing required field: name")

    if order is None:
        row = conn.execute('SELECT MAX("order") AS max_order FROM sections').fetchone()
        order = 0 if row["max_order"] is None else row["max_order"] + 1
    elif not isinstance(order, int) or isinstance(order, bool):
        return _invalid("'order' must be an integer")

    if _section_order_taken(conn, order):
        return _invalid(f"Section with order {order} already exists")

    section_id = _uuid()
    now = _now()
    try:
        with conn:
            conn.execute(
                """INSERT INTO sections
                   (id, name, "order", color, description, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (section_id, name, order, color, description, now, now),
            )
            record_activity(
                conn, actor.id, "created", "section", section_id, {"name": name, "order": order}
            )
    except sqlite3.IntegrityError:
        # another writer took the order after the check above
        if _section_order_taken(conn, order):
            return _invalid(f"Section with order {order} already exists")
        raise

    return get_section(conn, section_id)


def update_section(
    conn: sqlite3.Connection,
    actor: Actor | None,
    section_id: str,
    changes: dict[str, Any],
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM sections WHERE id = ?", (section_id,)).fetchone()
    if existing is None:
        return _not_found("Section", section_id)
    try:
        changes = parse_patch(SectionPatch, changes)
    except PatchError as e:
        return _invalid(str(e))
    if "name" in changes and not changes["name"]:
        return _invalid("'name' cannot be empty")
    if "order" in changes:
        order = changes["order"]
        if not isinstance(order, int) or isinstance(order, bool):
            return _invalid("'order' must be an integer")
        if _section_order_taken(conn, order, exclude_id=section_id):
            return _invalid(f"Section with order {order} already exists")

    if changes:
        try:
            with conn:
                _update_row(conn, "sections", section_id, changes, _now())
                record_activity(conn, actor.id, "updated", "section", section_id, dict(changes))
        except sqlite3.IntegrityError:
            order = changes.get("order")
            if order is not None and _section_order_taken(conn, order, exclude_id=section_id):
                return _invalid(f"Section with order {order} already exists")
            raise

    return get_section(conn, section_id)


def delete_section(
    conn: sqlite3.Connection, actor: Actor | None, section_id: str
) -> dict[str, Any]:
    """Delete an empty section. Sections still holding components are kept."""
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM sections WHERE id = ?", (section_id,)).fetchone()
    if existing is None:
        return _not_found("Section", section_id)
    in_use = conn.execute(
        "SELECT COUNT(*) AS cnt FROM components WHERE section_id = ?", (section_id,)
    ).fetchone()["cnt"]
    if in_use:
        return _invalid(
            f"Section '{existing['name']}' still has {in_use} component(s); move or delete them first"
        )

    with conn:
        conn.execute("DELETE FROM sections WHERE id = ?", (section_id,))
        record_activity(
            conn,
            actor.id,
            "deleted",
            "section",
            section_id,
            {"name": existing["name"], "order": existing["order"]},
        )
    return {"success": True}


# ── Component tools ───────────────────────────────────────


def list_components(
    conn: sqlite3.Connection,
    section_id: str | None = None,
    health_status: str | None = None,
) -> dict[str, Any]:
    """List components by section order, then creation time.

    Each component carries its metrics, open todos, unresolved issues,
    ideas, and per-collection counts.
    """
    query = """
        SELECT c.* FROM components c
        JOIN sections s ON c.section_id = s.id
    """
    clauses: list[str] = []
    params: list[Any] = []
    if section_id:
        clauses.append("c.section_id = ?")
        params.append(section_id)
    if health_status:
        clauses.append("c.health_status = ?")
        params.append(health_status)
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += ' ORDER BY s."order", c.created_at'

    components = []
    for row in conn.execute(query, params).fetchall():
        component = _component_out(conn, row)
        component_id = component["id"]
        component["metrics"] = [
            _metric_out(m)
            for m in conn.execute(
                'SELECT * FROM metrics WHERE component_id = ? ORDER BY "order"',
                (component_id,),
            ).fetchall()
        ]
        component["todos"] = [
            _todo_out(conn, t)
            for t in conn.execute(
                "SELECT * FROM todos WHERE component_id = ? AND completed = 0 "
                "ORDER BY created_at DESC",
                (component_id,),
            ).fetchall()
        ]
        component["issues"] = [
            _issue_out(conn, i)
            for i in conn.execute(
                "SELECT * FROM issues WHERE component_id = ? AND status != 'RESOLVED' "
                "ORDER BY priority",
                (component_id,),
            ).fetchall()
        ]
        component["ideas"] = [
            _idea_out(conn, i)
            for i in conn.execute(
                "SELECT * FROM ideas WHERE component_id = ? ORDER BY votes DESC",
                (component_id,),
            ).fetchall()
        ]
        component["counts"] = _component_counts(conn, component_id)
        components.append(component)

    return {"components": components}


def get_component(conn: sqlite3.Connection, component_id: str) -> dict[str, Any]:
    """Return a component with all of its related data."""
    row = conn.execute("SELECT * FROM components WHERE id = ?", (component_id,)).fetchone()
    if row is None:
        return _not_found("Component", component_id)
    return _component_detail(conn, row)


def get_component_health(conn: sqlite3.Connection, component_id: str) -> dict[str, Any]:
    """Return the persisted health status next to the metric-derived one.

    The two are independent; this never writes either.
    """
    row = conn.execute(
        "SELECT id, title, health_status FROM components WHERE id = ?", (component_id,)
    ).fetchone()
    if row is None:
        return _not_found("Component", component_id)

    metrics = [
        _row_to_dict(m)
        for m in conn.execute(
            "SELECT current, target FROM metrics WHERE component_id = ?", (component_id,)
        ).fetchall()
    ]
    met, total = count_meeting(metrics)
    return {
        "component_id": row["id"],
        "title": row["title"],
        "health_status": row["health_status"],
        "computed_status": calculate_health_status(metrics),
        "metrics_meeting_target": met,
        "metrics_total": total,
    }


def create_component(
    conn: sqlite3.Connection,
    actor: Actor | None,
    title: str,
    section_id: str,
    owner_id: str,
    tool: str | None = None,
    health_status: str | None = None,
    current_state: str | None = None,
    target_state: str | None = None,
    position_x: float | None = None,
    position_y: float | None = None,
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    if not title or not section_id or not owner_id:
        return _invalid("Missing required fields: title, section_id, owner_id")
    if not _section_exists(conn, section_id):
        return _not_found("Section", section_id)
    if not _user_exists(conn, owner_id):
        return _not_found("Owner", owner_id)
    health_status = health_status or "GRAY"
    if health_status not in HEALTH_STATUSES:
        return _invalid(
            f"Invalid health status '{health_status}'. Must be one of {', '.join(HEALTH_STATUSES)}"
        )

    component_id = _uuid()
    now = _now()
    with conn:
        conn.execute(
            """INSERT INTO components
               (id, title, section_id, owner_id, tool, health_status, current_state,
                target_state, position_x, position_y, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                component_id,
                title,
                section_id,
                owner_id,
                tool,
                health_status,
                current_state,
                target_state,
                position_x,
                position_y,
                now,
                now,
            ),
        )
        record_activity(
            conn,
            actor.id,
            "created",
            "component",
            component_id,
            {"title": title, "section_id": section_id, "owner_id": owner_id},
        )

    row = conn.execute("SELECT * FROM components WHERE id = ?", (component_id,)).fetchone()
    return _component_out(conn, row)


def update_component(
    conn: sqlite3.Connection,
    actor: Actor | None,
    component_id: str,
    changes: dict[str, Any],
) -> dict[str, Any]:
    """Apply a partial update. ``changes`` holds only the supplied fields."""
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute(
        "SELECT * FROM components WHERE id = ?", (component_id,)
    ).fetchone()
    if existing is None:
        return _not_found("Component", component_id)
    try:
        changes = parse_patch(ComponentPatch, changes)
    except PatchError as e:
        return _invalid(str(e))
    for required in ("title", "section_id", "owner_id"):
        if required in changes and not changes[required]:
            return _invalid(f"'{required}' cannot be empty")
    if "section_id" in changes and changes["section_id"] != existing["section_id"]:
        if not _section_exists(conn, changes["section_id"]):
            return _not_found("Section", changes["section_id"])
    if "owner_id" in changes and changes["owner_id"] != existing["owner_id"]:
        if not _user_exists(conn, changes["owner_id"]):
            return _not_found("Owner", changes["owner_id"])
    if "health_status" in changes and changes["health_status"] not in HEALTH_STATUSES:
        return _invalid(
            f"Invalid health status '{changes['health_status']}'. "
            f"Must be one of {', '.join(HEALTH_STATUSES)}"
        )

    if changes:
        with conn:
            _update_row(conn, "components", component_id, changes, _now())
            record_activity(
                conn, actor.id, "updated", "component", component_id, dict(changes)
            )

    row = conn.execute("SELECT * FROM components WHERE id = ?", (component_id,)).fetchone()
    return _component_out(conn, row)


def delete_component(
    conn: sqlite3.Connection, actor: Actor | None, component_id: str
) -> dict[str, Any]:
    """Delete a component; its children and connections go with it."""
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute(
        "SELECT * FROM components WHERE id = ?", (component_id,)
    ).fetchone()
    if existing is None:
        return _not_found("Component", component_id)

    with conn:
        conn.execute("DELETE FROM components WHERE id = ?", (component_id,))
        record_activity(
            conn,
            actor.id,
            "deleted",
            "component",
            component_id,
            {"title": existing["title"], "section_id": existing["section_id"]},
        )
    return {"success": True}


# ── Metric tools ──────────────────────────────────────────


def list_metrics(
    conn: sqlite3.Connection, component_id: str | None = None
) -> dict[str, Any]:
    query = "SELECT * FROM metrics"
    params: list[Any] = []
    if component_id:
        query += " WHERE component_id = ?"
        params.append(component_id)
    query += ' ORDER BY component_id, "order"'
    rows = conn.execute(query, params).fetchall()
    return {"metrics": [_with_component(conn, _metric_out(r)) for r in rows]}


def get_metric(conn: sqlite3.Connection, metric_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM metrics WHERE id = ?", (metric_id,)).fetchone()
    if row is None:
        return _not_found("Metric", metric_id)
    return _with_component(conn, _metric_out(row))


def _metric_order_taken(
    conn: sqlite3.Connection, component_id: str, order: int, exclude_id: str | None = None
) -> bool:
    row = conn.execute(
        'SELECT id FROM metrics WHERE component_id = ? AND "order" = ?',
        (component_id, order),
    ).fetchone()
    return row is not None and row["id"] != exclude_id


def create_metric(
    conn: sqlite3.Connection,
    actor: Actor | None,
    component_id: str,
    name: str,
    target: str | None = None,
    current: str | None = None,
    unit: str | None = None,
    order: int | None = None,
) -> dict[str, Any]:
    """Create a metric. A missing order goes after the component's last metric."""
    denied = require_editor(actor)
    if denied:
        return denied
    if not component_id or not name:
        return _invalid("Missing required fields: component_id, name")
    if not _component_exists(conn, component_id):
        return _not_found("Component", component_id)

    if order is None:
        row = conn.execute(
            'SELECT MAX("order") AS max_order FROM metrics WHERE component_id = ?',
            (component_id,),
        ).fetchone()
        order = 0 if row["max_order"] is None else row["max_order"] + 1
    elif not isinstance(order, int) or isinstance(order, bool):
        return _invalid("'order' must be an integer")
    elif _metric_order_taken(conn, component_id, order):
        return _invalid(f"Metric with order {order} already exists on this component")

    metric_id = _uuid()
    now = _now()
    try:
        with conn:
            conn.execute(
                """INSERT INTO metrics
                   (id, component_id, name, target, current, unit, "order", created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (metric_id, component_id, name, target, current, unit, order, now, now),
            )
            record_activity(
                conn,
                actor.id,
                "created",
                "metric",
                metric_id,
                {"name": name, "component_id": component_id},
            )
    except sqlite3.IntegrityError:
        # a concurrent writer took the order or removed the component
        if not _component_exists(conn, component_id):
            return _not_found("Component", component_id)
        if _metric_order_taken(conn, component_id, order):
            return _invalid(f"Metric with order {order} already exists on this component")
        raise
    return get_metric(conn, metric_id)


def update_metric(
    conn: sqlite3.Connection,
    actor: Actor | None,
    metric_id: str,
    changes: dict[str, Any],
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM metrics WHERE id = ?", (metric_id,)).fetchone()
    if existing is None:
        return _not_found("Metric", metric_id)
    try:
        changes = parse_patch(MetricPatch, changes)
    except PatchError as e:
        return _invalid(str(e))
    if "name" in changes and not changes["name"]:
        return _invalid("'name' cannot be empty")
    if "order" in changes:
        order = changes["order"]
        if not isinstance(order, int) or isinstance(order, bool):
            return _invalid("'order' must be an integer")
        if _metric_order_taken(conn, existing["component_id"], order, exclude_id=metric_id):
            return _invalid(f"Metric with order {order} already exists on this component")

    if changes:
        try:
            with conn:
                _update_row(conn, "metrics", metric_id, changes, _now())
                record_activity(conn, actor.id, "updated", "metric", metric_id, dict(changes))
        except sqlite3.IntegrityError:
            order = changes.get("order")
            component_id = existing["component_id"]
            if order is not None and _metric_order_taken(
                conn, component_id, order, exclude_id=metric_id
            ):
                return _invalid(f"Metric with order {order} already exists on this component")
            raise
    return get_metric(conn, metric_id)


def delete_metric(
    conn: sqlite3.Connection, actor: Actor | None, metric_id: str
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM metrics WHERE id = ?", (metric_id,)).fetchone()
    if existing is None:
        return _not_found("Metric", metric_id)

    with conn:
        conn.execute("DELETE FROM metrics WHERE id = ?", (metric_id,))
        record_activity(
            conn, actor.id, "deleted", "metric", metric_id, {"name": existing["name"]}
        )
    return {"success": True}


# ── Todo tools ────────────────────────────────────────────


def list_todos(
    conn: sqlite3.Connection,
    component_id: str | None = None,
    completed: bool | None = None,
) -> dict[str, Any]:
    """List todos: open first, then by due date, newest first."""
    query = "SELECT * FROM todos"
    clauses: list[str] = []
    params: list[Any] = []
    if component_id:
        clauses.append("component_id = ?")
        params.append(component_id)
    if completed is not None:
        clauses.append("completed = ?")
        params.append(int(completed))
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY completed, due_date IS NULL, due_date, created_at DESC"
    rows = conn.execute(query, params).fetchall()
    return {"todos": [_with_component(conn, _todo_out(conn, r)) for r in rows]}


def get_todo(conn: sqlite3.Connection, todo_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM todos WHERE id = ?", (todo_id,)).fetchone()
    if row is None:
        return _not_found("Todo", todo_id)
    return _with_component(conn, _todo_out(conn, row))


def create_todo(
    conn: sqlite3.Connection,
    actor: Actor | None,
    component_id: str,
    title: str,
    description: str | None = None,
    assignee_id: str | None = None,
    due_date: str | None = None,
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    if not component_id or not title:
        return _invalid("Missing required fields: component_id, title")
    if not _component_exists(conn, component_id):
        return _not_found("Component", component_id)
    if assignee_id and not _user_exists(conn, assignee_id):
        return _not_found("Assignee", assignee_id)

    todo_id = _uuid()
    now = _now()
    with conn:
        conn.execute(
            """INSERT INTO todos
               (id, component_id, title, description, assignee_id, due_date,
                completed, completed_at, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, 0, NULL, ?, ?)""",
            (todo_id, component_id, title, description, assignee_id, due_date, now, now),
        )
        record_activity(
            conn,
            actor.id,
            "created",
            "todo",
            todo_id,
            {"title": title, "component_id": component_id},
        )
    return get_todo(conn, todo_id)


def update_todo(
    conn: sqlite3.Connection,
    actor: Actor | None,
    todo_id: str,
    changes: dict[str, Any],
) -> dict[str, Any]:
    """Update a todo, including toggling completion.

    Only a real flip of ``completed`` touches ``completed_at`` and changes
    the audit verb to 'completed' / 'uncompleted'.
    """
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM todos WHERE id = ?", (todo_id,)).fetchone()
    if existing is None:
        return _not_found("Todo", todo_id)
    try:
        changes = parse_patch(TodoPatch, changes)
    except PatchError as e:
        return _invalid(str(e))
    if "title" in changes and not changes["title"]:
        return _invalid("'title' cannot be empty")
    assignee_id = changes.get("assignee_id")
    if assignee_id is not None and not _user_exists(conn, assignee_id):
        return _not_found("Assignee", assignee_id)

    now = _now()
    try:
        transition = todo_transition(bool(existing["completed"]), changes, now)
    except InvalidTransitionError as e:
        return _invalid(str(e))

    fields = {**changes, **transition.derived}
    if fields:
        with conn:
            _update_row(conn, "todos", todo_id, fields, now)
            record_activity(
                conn,
                actor.id,
                transition.action,
                "todo",
                todo_id,
                {**fields, **transition.audit_extra},
            )
    return get_todo(conn, todo_id)


def delete_todo(
    conn: sqlite3.Connection, actor: Actor | None, todo_id: str
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM todos WHERE id = ?", (todo_id,)).fetchone()
    if existing is None:
        return _not_found("Todo", todo_id)

    with conn:
        conn.execute("DELETE FROM todos WHERE id = ?", (todo_id,))
        record_activity(
            conn, actor.id, "deleted", "todo", todo_id, {"title": existing["title"]}
        )
    return {"success": True}


# ── Issue tools ───────────────────────────────────────────


def list_issues(
    conn: sqlite3.Connection,
    component_id: str | None = None,
    status: str | None = None,
    priority: str | None = None,
) -> dict[str, Any]:
    """List issues by priority (P1 first), newest first within a priority."""
    query = "SELECT * FROM issues"
    clauses: list[str] = []
    params: list[Any] = []
    if component_id:
        clauses.append("component_id = ?")
        params.append(component_id)
    if status:
        clauses.append("status = ?")
        params.append(status)
    if priority:
        clauses.append("priority = ?")
        params.append(priority)
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY priority, created_at DESC"
    rows = conn.execute(query, params).fetchall()
    return {"issues": [_with_component(conn, _issue_out(conn, r)) for r in rows]}


def get_issue(conn: sqlite3.Connection, issue_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
    if row is None:
        return _not_found("Issue", issue_id)
    return _with_component(conn, _issue_out(conn, row))


def create_issue(
    conn: sqlite3.Connection,
    actor: Actor | None,
    component_id: str,
    title: str,
    description: str | None = None,
    priority: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    """Report an issue against a component. Defaults: P2, OPEN."""
    denied = require_editor(actor)
    if denied:
        return denied
    if not component_id or not title:
        return _invalid("Missing required fields: component_id, title")
    if not _component_exists(conn, component_id):
        return _not_found("Component", component_id)
    priority = priority or "P2"
    status = status or "OPEN"
    if priority not in PRIORITIES:
        return _invalid(f"Invalid priority '{priority}'. Must be one of {', '.join(PRIORITIES)}")
    if status not in ISSUE_STATUSES:
        return _invalid(f"Invalid status '{status}'. Must be one of {', '.join(ISSUE_STATUSES)}")

    issue_id = _uuid()
    now = _now()
    resolved_at = now if status == "RESOLVED" else None
    with conn:
        conn.execute(
            """INSERT INTO issues
               (id, component_id, title, description, priority, status,
                reported_by_id, resolved_at, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                issue_id,
                component_id,
                title,
                description,
                priority,
                status,
                actor.id,
                resolved_at,
                now,
                now,
            ),
        )
        record_activity(
            conn,
            actor.id,
            "created",
            "issue",
            issue_id,
            {"title": title, "component_id": component_id, "priority": priority},
        )
    return get_issue(conn, issue_id)


def update_issue(
    conn: sqlite3.Connection,
    actor: Actor | None,
    issue_id: str,
    changes: dict[str, Any],
) -> dict[str, Any]:
    """Update an issue. A real status change is audited as 'status_changed'."""
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
    if existing is None:
        return _not_found("Issue", issue_id)
    try:
        changes = parse_patch(IssuePatch, changes)
    except PatchError as e:
        return _invalid(str(e))
    if "title" in changes and not changes["title"]:
        return _invalid("'title' cannot be empty")
    if "priority" in changes and changes["priority"] not in PRIORITIES:
        return _invalid(
            f"Invalid priority '{changes['priority']}'. Must be one of {', '.join(PRIORITIES)}"
        )

    now = _now()
    try:
        transition = issue_transition(existing["status"], changes, now)
    except InvalidTransitionError as e:
        return _invalid(str(e))

    fields = {**changes, **transition.derived}
    if fields:
        with conn:
            _update_row(conn, "issues", issue_id, fields, now)
            record_activity(
                conn,
                actor.id,
                transition.action,
                "issue",
                issue_id,
                {**fields, **transition.audit_extra},
            )
    return get_issue(conn, issue_id)


def delete_issue(
    conn: sqlite3.Connection, actor: Actor | None, issue_id: str
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM issues WHERE id = ?", (issue_id,)).fetchone()
    if existing is None:
        return _not_found("Issue", issue_id)

    with conn:
        conn.execute("DELETE FROM issues WHERE id = ?", (issue_id,))
        record_activity(
            conn,
            actor.id,
            "deleted",
            "issue",
            issue_id,
            {"title": existing["title"], "priority": existing["priority"]},
        )
    return {"success": True}


# ── Idea tools ────────────────────────────────────────────


def list_ideas(
    conn: sqlite3.Connection,
    component_id: str | None = None,
    implemented: bool | None = None,
) -> dict[str, Any]:
    """List ideas: pending first, then most voted, then newest."""
    query = "SELECT * FROM ideas"
    clauses: list[str] = []
    params: list[Any] = []
    if component_id:
        clauses.append("component_id = ?")
        params.append(component_id)
    if implemented is not None:
        clauses.append("implemented = ?")
        params.append(int(implemented))
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY implemented, votes DESC, created_at DESC"
    rows = conn.execute(query, params).fetchall()
    return {"ideas": [_with_component(conn, _idea_out(conn, r)) for r in rows]}


def get_idea(conn: sqlite3.Connection, idea_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM ideas WHERE id = ?", (idea_id,)).fetchone()
    if row is None:
        return _not_found("Idea", idea_id)
    return _with_component(conn, _idea_out(conn, row))


def create_idea(
    conn: sqlite3.Connection,
    actor: Actor | None,
    component_id: str,
    title: str,
    description: str | None = None,
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    if not component_id or not title:
        return _invalid("Missing required fields: component_id, title")
    if not _component_exists(conn, component_id):
        return _not_found("Component", component_id)

    idea_id = _uuid()
    now = _now()
    with conn:
        conn.execute(
            """INSERT INTO ideas
               (id, component_id, title, description, votes, implemented,
                submitted_by_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, 0, 0, ?, ?, ?)""",
            (idea_id, component_id, title, description, actor.id, now, now),
        )
        record_activity(
            conn,
            actor.id,
            "created",
            "idea",
            idea_id,
            {"title": title, "component_id": component_id},
        )
    return get_idea(conn, idea_id)


def update_idea(
    conn: sqlite3.Connection,
    actor: Actor | None,
    idea_id: str,
    changes: dict[str, Any],
) -> dict[str, Any]:
    """Update an idea's text, votes or implemented flag."""
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM ideas WHERE id = ?", (idea_id,)).fetchone()
    if existing is None:
        return _not_found("Idea", idea_id)
    try:
        changes = parse_patch(IdeaPatch, changes)
    except PatchError as e:
        return _invalid(str(e))
    if "title" in changes and not changes["title"]:
        return _invalid("'title' cannot be empty")
    if "votes" in changes:
        votes = changes["votes"]
        if not isinstance(votes, int) or isinstance(votes, bool) or votes < 0:
            return _invalid("Votes must be a non-negative number")

    try:
        transition = idea_transition(bool(existing["implemented"]), changes)
    except InvalidTransitionError as e:
        return _invalid(str(e))

    if changes:
        with conn:
            _update_row(conn, "ideas", idea_id, changes, _now())
            record_activity(
                conn, actor.id, transition.action, "idea", idea_id, dict(changes)
            )
    return get_idea(conn, idea_id)


def delete_idea(
    conn: sqlite3.Connection, actor: Actor | None, idea_id: str
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute("SELECT * FROM ideas WHERE id = ?", (idea_id,)).fetchone()
    if existing is None:
        return _not_found("Idea", idea_id)

    with conn:
        conn.execute("DELETE FROM ideas WHERE id = ?", (idea_id,))
        record_activity(
            conn,
            actor.id,
            "deleted",
            "idea",
            idea_id,
            {"title": existing["title"], "votes": existing["votes"]},
        )
    return {"success": True}


# ── Comment tools ─────────────────────────────────────────


def list_comments(
    conn: sqlite3.Connection, component_id: str | None = None
) -> dict[str, Any]:
    query = "SELECT * FROM comments"
    params: list[Any] = []
    if component_id:
        query += " WHERE component_id = ?"
        params.append(component_id)
    query += " ORDER BY created_at DESC"
    rows = conn.execute(query, params).fetchall()
    return {"comments": [_with_component(conn, _comment_out(conn, r)) for r in rows]}


def get_comment(conn: sqlite3.Connection, comment_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM comments WHERE id = ?", (comment_id,)).fetchone()
    if row is None:
        return _not_found("Comment", comment_id)
    return _with_component(conn, _comment_out(conn, row))


def add_comment(
    conn: sqlite3.Connection,
    actor: Actor | None,
    component_id: str,
    content: str,
) -> dict[str, Any]:
    """Add a comment to a component's thread, authored by the actor."""
    denied = require_editor(actor)
    if denied:
        return denied
    if not component_id or not content:
        return _invalid("Missing required fields: component_id, content")
    if not _component_exists(conn, component_id):
        return _not_found("Component", component_id)

    comment_id = _uuid()
    now = _now()
    with conn:
        conn.execute(
            """INSERT INTO comments (id, component_id, content, author_id, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (comment_id, component_id, content, actor.id, now, now),
        )
        record_activity(
            conn,
            actor.id,
            "created",
            "comment",
            comment_id,
            {"component_id": component_id, "content_preview": _preview(content)},
        )
    return get_comment(conn, comment_id)


def update_comment(
    conn: sqlite3.Connection,
    actor: Actor | None,
    comment_id: str,
    content: str,
) -> dict[str, Any]:
    existing = conn.execute("SELECT * FROM comments WHERE id = ?", (comment_id,)).fetchone()
    if existing is None:
        denied = require_actor(actor)
        return denied or _not_found("Comment", comment_id)
    denied = require_comment_owner(actor, existing["author_id"])
    if denied:
        return denied
    if not content:
        return _invalid("Content is required")

    with conn:
        _update_row(conn, "comments", comment_id, {"content": content}, _now())
        record_activity(
            conn,
            actor.id,
            "updated",
            "comment",
            comment_id,
            {"content_preview": _preview(content)},
        )
    return get_comment(conn, comment_id)


def delete_comment(
    conn: sqlite3.Connection, actor: Actor | None, comment_id: str
) -> dict[str, Any]:
    existing = conn.execute("SELECT * FROM comments WHERE id = ?", (comment_id,)).fetchone()
    if existing is None:
        denied = require_actor(actor)
        return denied or _not_found("Comment", comment_id)
    denied = require_comment_owner(actor, existing["author_id"])
    if denied:
        return denied

    with conn:
        conn.execute("DELETE FROM comments WHERE id = ?", (comment_id,))
        record_activity(
            conn,
            actor.id,
            "deleted",
            "comment",
            comment_id,
            {"content_preview": _preview(existing["content"])},
        )
    return {"success": True}


# ── Connection tools ──────────────────────────────────────


def list_connections(
    conn: sqlite3.Connection, component_id: str | None = None
) -> dict[str, Any]:
    """List connections, optionally those touching one component."""
    query = "SELECT * FROM connections"
    params: list[Any] = []
    if component_id:
        query += " WHERE from_component_id = ? OR to_component_id = ?"
        params.extend([component_id, component_id])
    query += " ORDER BY created_at"
    connections = []
    for row in conn.execute(query, params).fetchall():
        connection = _row_to_dict(row)
        connection["from_component"] = _component_brief(conn, row["from_component_id"])
        connection["to_component"] = _component_brief(conn, row["to_component_id"])
        connections.append(connection)
    return {"connections": connections}


def create_connection(
    conn: sqlite3.Connection,
    actor: Actor | None,
    from_component_id: str,
    to_component_id: str,
    label: str | None = None,
) -> dict[str, Any]:
    """Draw a directed data-flow edge between two components."""
    denied = require_editor(actor)
    if denied:
        return denied
    if not from_component_id or not to_component_id:
        return _invalid("Missing required fields: from_component_id, to_component_id")
    for component_id in (from_component_id, to_component_id):
        if not _component_exists(conn, component_id):
            return _not_found("Component", component_id)

    connection_id = _uuid()
    now = _now()
    with conn:
        conn.execute(
            """INSERT INTO connections (id, from_component_id, to_component_id, label, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (connection_id, from_component_id, to_component_id, label, now),
        )
        record_activity(
            conn,
            actor.id,
            "created",
            "connection",
            connection_id,
            {
                "from_component_id": from_component_id,
                "to_component_id": to_component_id,
                "label": label,
            },
        )
    return {
        "id": connection_id,
        "from_component_id": from_component_id,
        "to_component_id": to_component_id,
        "label": label,
        "created_at": now,
    }


def delete_connection(
    conn: sqlite3.Connection, actor: Actor | None, connection_id: str
) -> dict[str, Any]:
    denied = require_editor(actor)
    if denied:
        return denied
    existing = conn.execute(
        "SELECT * FROM connections WHERE id = ?", (connection_id,)
    ).fetchone()
    if existing is None:
        return _not_found("Connection", connection_id)

    with conn:
        conn.execute("DELETE FROM connections WHERE id = ?", (connection_id,))
        record_activity(
            conn,
            actor.id,
            "deleted",
            "connection",
            connection_id,
            {
                "from_component_id": existing["from_component_id"],
                "to_component_id": existing["to_component_id"],
                "label": existing["label"],
            },
        )
    return {"success": True}


# ── Process map, snapshots and dashboard ──────────────────


def get_process_map(conn: sqlite3.Connection) -> dict[str, Any]:
    """Return the full section -> component -> children tree in display order."""
    sections = []
    for section in conn.execute('SELECT * FROM sections ORDER BY "order"').fetchall():
        section_dict = _row_to_dict(section)
        components = conn.execute(
            "SELECT * FROM components WHERE section_id = ? ORDER BY created_at",
            (section["id"],),
        ).fetchall()
        section_dict["components"] = [_component_detail(conn, c) for c in components]
        sections.append(section_dict)
    return {"sections": sections}


def get_process_graph(conn: sqlite3.Connection) -> dict[str, Any]:
    """Return flowchart node positions and edges for the graph view."""
    sections = []
    for section in conn.execute('SELECT * FROM sections ORDER BY "order"').fetchall():
        components = conn.execute(
            "SELECT id, title, health_status FROM components WHERE section_id = ? "
            "ORDER BY created_at",
            (section["id"],),
        ).fetchall()
        sections.append(
            {"id": section["id"], "components": [_row_to_dict(c) for c in components]}
        )
    connections = [
        _row_to_dict(c) for c in conn.execute("SELECT * FROM connections").fetchall()
    ]
    return build_graph(sections, connections)


def list_snapshots(conn: sqlite3.Connection) -> dict[str, Any]:
    """List snapshots newest first, without their data payload."""
    rows = conn.execute(
        "SELECT id, name, created_at, created_by_id FROM snapshots ORDER BY created_at DESC"
    ).fetchall()
    return {"snapshots": [_row_to_dict(r) for r in rows]}


def get_snapshot(conn: sqlite3.Connection, snapshot_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()
    if row is None:
        return _not_found("Snapshot", snapshot_id)
    snapshot = _row_to_dict(row)
    snapshot["data"] = json.loads(snapshot["data"])
    return snapshot


def create_snapshot(
    conn: sqlite3.Connection, actor: Actor | None, name: str
) -> dict[str, Any]:
    """Freeze the entire process map under a name."""
    denied = require_editor(actor)
    if denied:
        return denied
    if not name:
        return _invalid("Missing required field: name")

    snapshot_id = _uuid()
    now = _now()
    with conn:
        sections = get_process_map(conn)["sections"]
        component_count = sum(len(s["components"]) for s in sections)
        conn.execute(
            """INSERT INTO snapshots (id, name, data, created_by_id, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (snapshot_id, name, json.dumps(sections), actor.id, now),
        )
        record_activity(
            conn,
            actor.id,
            "created",
            "snapshot",
            snapshot_id,
            {"name": name, "component_count": component_count},
        )
    return {
        "id": snapshot_id,
        "name": name,
        "created_at": now,
        "created_by_id": actor.id,
    }


def get_dashboard(conn: sqlite3.Connection) -> dict[str, Any]:
    """Aggregate numbers for the landing dashboard.

    Counts use each component's persisted health status.
    """
    statuses = [
        r["health_status"]
        for r in conn.execute("SELECT health_status FROM components").fetchall()
    ]
    by_health = {status: 0 for status in HEALTH_STATUSES}
    for status in statuses:
        by_health[status] = by_health.get(status, 0) + 1

    counts = conn.execute(
        """SELECT
               (SELECT COUNT(*) FROM todos WHERE completed = 0) AS active_todos,
               (SELECT COUNT(*) FROM issues WHERE status != 'RESOLVED') AS open_issues,
               (SELECT COUNT(*) FROM ideas WHERE implemented = 0) AS pending_ideas"""
    ).fetchone()

    return {
        "overall_health": overall_health_score(statuses),
        "total_components": len(statuses),
        "components_by_health": by_health,
        "active_todos": counts["active_todos"],
        "open_issues": counts["open_issues"],
        "pending_ideas": counts["pending_ideas"],
        "recent_activity": list_activity(conn, limit=10, include_details=False)[
            "activities"
        ],
    }
