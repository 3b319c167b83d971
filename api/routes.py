"""REST route handlers for the process-map API.

Routes wrap the business operations in process_map.mcp.tools with HTTP
semantics. Every route needs an authenticated user; the operations decide
what that user's role may change.
"""

import sqlite3
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from api.deps import get_actor, get_db
from api.models import (
    ActivityPageResponse,
    ComponentHealthResponse,
    ConnectionResponse,
    CreateCommentRequest,
    CreateComponentRequest,
    CreateConnectionRequest,
    CreateIdeaRequest,
    CreateIssueRequest,
    CreateMetricRequest,
    CreateSectionRequest,
    CreateSnapshotRequest,
    CreateTodoRequest,
    DashboardResponse,
    SectionResponse,
    SnapshotResponse,
    SnapshotSummaryResponse,
    SuccessResponse,
    UpdateCommentRequest,
    UpdateComponentRequest,
    UpdateIdeaRequest,
    UpdateIssueRequest,
    UpdateMetricRequest,
    UpdateSectionRequest,
    UpdateTodoRequest,
    UserResponse,
)
from process_map.activity import list_activity
from process_map.mcp import tools
from process_map.permissions import Actor

router = APIRouter()

_STATUS_BY_ERROR = {
    "unauthenticated": 401,
    "forbidden": 403,
    "not_found": 404,
    "invalid_input": 422,
}


def _check_error(result: dict[str, Any]) -> None:
    """Convert tool error dicts to HTTPException."""
    if "error" not in result:
        return
    error = result["error"]
    message = result.get("message", "Unknown error")
    raise HTTPException(
        status_code=_STATUS_BY_ERROR.get(error, 400),
        detail={"error": error, "message": message},
    )


# Store config reference for request defaults
_config: dict[str, Any] | None = None


def set_config(config: dict[str, Any] | None) -> None:
    """Set the config dict used for request defaults."""
    global _config  # noqa: PLW0603
    _config = config


# ── User endpoints ─────────────────────────────────────────


@router.get("/users", response_model=list[UserResponse])
def list_users(
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    return tools.list_users(conn)["users"]


# ── Section endpoints ──────────────────────────────────────


@router.get("/sections")
def list_sections(
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    """List sections in display order with their components."""
    return tools.list_sections(conn)["sections"]


@router.post("/sections", status_code=201, response_model=SectionResponse)
def create_section(
    body: CreateSectionRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.create_section(
        conn,
        actor,
        name=body.name,
        color=body.color,
        description=body.description,
        order=body.order,
    )
    _check_error(result)
    return result


@router.patch("/sections/{section_id}", response_model=SectionResponse)
def update_section(
    section_id: str,
    body: UpdateSectionRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.update_section(
        conn, actor, section_id, body.model_dump(exclude_unset=True)
    )
    _check_error(result)
    return result


@router.delete("/sections/{section_id}", response_model=SuccessResponse)
def delete_section(
    section_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.delete_section(conn, actor, section_id)
    _check_error(result)
    return result


# ── Component endpoints ────────────────────────────────────


@router.get("/components")
def list_components(
    section_id: str | None = None,
    health_status: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    """List components, optionally filtered by section or health status."""
    return tools.list_components(conn, section_id, health_status)["components"]


@router.post("/components", status_code=201)
def create_component(
    body: CreateComponentRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.create_component(conn, actor, **body.model_dump())
    _check_error(result)
    return result


@router.get("/components/{component_id}")
def get_component(
    component_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Get a component with metrics, todos, issues, ideas, comments and connections."""
    result = tools.get_component(conn, component_id)
    _check_error(result)
    return result


@router.get("/components/{component_id}/health", response_model=ComponentHealthResponse)
def get_component_health(
    component_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.get_component_health(conn, component_id)
    _check_error(result)
    return result


@router.patch("/components/{component_id}")
def update_component(
    component_id: str,
    body: UpdateComponentRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.update_component(
        conn, actor, component_id, body.model_dump(exclude_unset=True)
    )
    _check_error(result)
    return result


@router.delete("/components/{component_id}", response_model=SuccessResponse)
def delete_component(
    component_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.delete_component(conn, actor, component_id)
    _check_error(result)
    return result


# ── Metric endpoints ───────────────────────────────────────


@router.get("/metrics")
def list_metrics(
    component_id: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    return tools.list_metrics(conn, component_id)["metrics"]


@router.post("/metrics", status_code=201)
def create_metric(
    body: CreateMetricRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.create_metric(conn, actor, **body.model_dump())
    _check_error(result)
    return result


@router.patch("/metrics/{metric_id}")
def update_metric(
    metric_id: str,
    body: UpdateMetricRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.update_metric(
        conn, actor, metric_id, body.model_dump(exclude_unset=True)
    )
    _check_error(result)
    return result


@router.delete("/metrics/{metric_id}", response_model=SuccessResponse)
def delete_metric(
    metric_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.delete_metric(conn, actor, metric_id)
    _check_error(result)
    return result


# ── Todo endpoints ─────────────────────────────────────────


@router.get("/todos")
def list_todos(
    component_id: str | None = None,
    completed: bool | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    return tools.list_todos(conn, component_id, completed)["todos"]


@router.post("/todos", status_code=201)
def create_todo(
    body: CreateTodoRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.create_todo(conn, actor, **body.model_dump())
    _check_error(result)
    return result


@router.patch("/todos/{todo_id}")
def update_todo(
    todo_id: str,
    body: UpdateTodoRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Update a todo; toggling ``completed`` stamps or clears completed_at."""
    result = tools.update_todo(conn, actor, todo_id, body.model_dump(exclude_unset=True))
    _check_error(result)
    return result


@router.delete("/todos/{todo_id}", response_model=SuccessResponse)
def delete_todo(
    todo_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.delete_todo(conn, actor, todo_id)
    _check_error(result)
    return result


# ── Issue endpoints ────────────────────────────────────────


@router.get("/issues")
def list_issues(
    component_id: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    return tools.list_issues(conn, component_id, status, priority)["issues"]


@router.post("/issues", status_code=201)
def create_issue(
    body: CreateIssueRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.create_issue(conn, actor, **body.model_dump())
    _check_error(result)
    return result


@router.patch("/issues/{issue_id}")
def update_issue(
    issue_id: str,
    body: UpdateIssueRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Update an issue; moving into or out of RESOLVED sets or clears resolved_at."""
    result = tools.update_issue(
        conn, actor, issue_id, body.model_dump(exclude_unset=True)
    )
    _check_error(result)
    return result


@router.delete("/issues/{issue_id}", response_model=SuccessResponse)
def delete_issue(
    issue_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.delete_issue(conn, actor, issue_id)
    _check_error(result)
    return result


# ── Idea endpoints ─────────────────────────────────────────


@router.get("/ideas")
def list_ideas(
    component_id: str | None = None,
    implemented: bool | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    return tools.list_ideas(conn, component_id, implemented)["ideas"]


@router.post("/ideas", status_code=201)
def create_idea(
    body: CreateIdeaRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.create_idea(conn, actor, **body.model_dump())
    _check_error(result)
    return result


@router.patch("/ideas/{idea_id}")
def update_idea(
    idea_id: str,
    body: UpdateIdeaRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.update_idea(conn, actor, idea_id, body.model_dump(exclude_unset=True))
    _check_error(result)
    return result


@router.delete("/ideas/{idea_id}", response_model=SuccessResponse)
def delete_idea(
    idea_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.delete_idea(conn, actor, idea_id)
    _check_error(result)
    return result


# ── Comment endpoints ──────────────────────────────────────


@router.get("/comments")
def list_comments(
    component_id: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    return tools.list_comments(conn, component_id)["comments"]


@router.post("/comments", status_code=201)
def create_comment(
    body: CreateCommentRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Add a comment to a component, authored by the acting user."""
    result = tools.add_comment(
        conn, actor, component_id=body.component_id, content=body.content
    )
    _check_error(result)
    return result


@router.patch("/comments/{comment_id}")
def update_comment(
    comment_id: str,
    body: UpdateCommentRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.update_comment(conn, actor, comment_id, body.content)
    _check_error(result)
    return result


@router.delete("/comments/{comment_id}", response_model=SuccessResponse)
def delete_comment(
    comment_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.delete_comment(conn, actor, comment_id)
    _check_error(result)
    return result


# ── Connection endpoints ───────────────────────────────────


@router.get("/connections")
def list_connections(
    component_id: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    return tools.list_connections(conn, component_id)["connections"]


@router.post("/connections", status_code=201, response_model=ConnectionResponse)
def create_connection(
    body: CreateConnectionRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.create_connection(
        conn,
        actor,
        from_component_id=body.from_component_id,
        to_component_id=body.to_component_id,
        label=body.label,
    )
    _check_error(result)
    return result


@router.delete("/connections/{connection_id}", response_model=SuccessResponse)
def delete_connection(
    connection_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.delete_connection(conn, actor, connection_id)
    _check_error(result)
    return result


# ── Activity endpoint ──────────────────────────────────────


@router.get("/activity", response_model=ActivityPageResponse)
def get_activity(
    user_id: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    limit: int | None = None,
    offset: int = 0,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Return a page of the audit log, newest first, with entity details."""
    if limit is None and _config is not None:
        limit = _config.get("activity_page_size")
    return list_activity(
        conn,
        user_id=user_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        limit=limit,
        offset=offset,
    )


# ── Snapshot endpoints ─────────────────────────────────────


@router.get("/snapshots", response_model=list[SnapshotSummaryResponse])
def list_snapshots(
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> list[dict[str, Any]]:
    return tools.list_snapshots(conn)["snapshots"]


@router.post("/snapshots", status_code=201, response_model=SnapshotSummaryResponse)
def create_snapshot(
    body: CreateSnapshotRequest,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Freeze the current process map under a name."""
    result = tools.create_snapshot(conn, actor, body.name)
    _check_error(result)
    return result


@router.get("/snapshots/{snapshot_id}", response_model=SnapshotResponse)
def get_snapshot(
    snapshot_id: str,
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = tools.get_snapshot(conn, snapshot_id)
    _check_error(result)
    return result


# ── Dashboard and graph ────────────────────────────────────


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    return tools.get_dashboard(conn)


@router.get("/process-map/graph")
def get_process_graph(
    conn: sqlite3.Connection = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    """Node positions and edges for the flowchart view."""
    return tools.get_process_graph(conn)
