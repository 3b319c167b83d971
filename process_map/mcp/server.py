"""MCP server for process-map.

Exposes the process map to assistants via stdio transport.
Launched by `process-map mcp --user-id <id>`; every write is performed
and audited as that user.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from db.migrations import init_db
from process_map.activity import list_activity
from process_map.mcp import tools
from process_map.permissions import Actor, load_actor

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Lifespan state accessible by tools via Context."""

    conn: sqlite3.Connection
    actor: Actor | None


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppState]:  # type: ignore[type-arg]
    """Open DB connection and resolve the acting user at startup."""
    db_path = os.environ.get("PROCESS_MAP_DB", "~/.process-map/process-map.db")
    db_path = str(Path(db_path).expanduser())

    conn = init_db(db_path)
    actor = load_actor(conn, os.environ.get("PROCESS_MAP_USER_ID"))
    if actor is None:
        logger.warning("No valid PROCESS_MAP_USER_ID; write tools will be refused")
    try:
        yield AppState(conn=conn, actor=actor)
    finally:
        conn.close()


def _get_state(ctx: Context) -> AppState:
    """Extract lifespan state from Context."""
    return ctx.request_context.lifespan_context


def _dump(result: dict[str, Any]) -> str:
    return json.dumps(result, indent=2)


def create_server() -> FastMCP:
    """Create and configure the MCP server with all tools registered."""
    server = FastMCP(
        name="process-map",
        instructions="Read and update the business process map: components, metrics, todos, issues, ideas and comments.",
        lifespan=app_lifespan,
    )

    # ── Read tools ─────────────────────────────────────────

    @server.tool(description="Return every section with its components and their children")
    def get_process_map(ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_process_map(_get_state(ctx).conn))

    @server.tool(description="Return a component with metrics, todos, issues, ideas, comments and connections")
    def get_component(component_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_component(_get_state(ctx).conn, component_id))

    @server.tool(description="Compare a component's stored health status with the one computed from its metrics")
    def get_component_health(component_id: str, ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_component_health(_get_state(ctx).conn, component_id))

    @server.tool(description="Return dashboard totals and recent activity")
    def get_dashboard(ctx: Context = None) -> str:  # type: ignore[assignment]
        return _dump(tools.get_dashboard(_get_state(ctx).conn))

    @server.tool(description="Return a page of the activity log, newest first")
    def get_activity(
        user_id: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        action: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        result = list_activity(
            _get_state(ctx).conn,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            limit=limit,
            offset=offset,
        )
        return _dump(result)

    # ── Write tools ────────────────────────────────────────

    @server.tool(description="Add a metric to a component")
    def create_metric(
        component_id: str,
        name: str,
        target: str | None = None,
        current: str | None = None,
        unit: str | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        result = tools.create_metric(
            state.conn, state.actor, component_id, name, target, current, unit
        )
        return _dump(result)

    @server.tool(description="Update a metric. Pass only the fields to change.")
    def update_metric(
        metric_id: str,
        changes: dict[str, Any],
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        return _dump(tools.update_metric(state.conn, state.actor, metric_id, changes))

    @server.tool(description="Create a todo on a component")
    def create_todo(
        component_id: str,
        title: str,
        description: str | None = None,
        assignee_id: str | None = None,
        due_date: str | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        result = tools.create_todo(
            state.conn, state.actor, component_id, title, description, assignee_id, due_date
        )
        return _dump(result)

    @server.tool(description="Update a todo, e.g. {\"completed\": true}. Pass only the fields to change.")
    def update_todo(
        todo_id: str,
        changes: dict[str, Any],
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        return _dump(tools.update_todo(state.conn, state.actor, todo_id, changes))

    @server.tool(description="Report an issue on a component (priority P1-P4, default P2)")
    def create_issue(
        component_id: str,
        title: str,
        description: str | None = None,
        priority: str | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        result = tools.create_issue(
            state.conn, state.actor, component_id, title, description, priority
        )
        return _dump(result)

    @server.tool(description="Update an issue, e.g. {\"status\": \"RESOLVED\"}. Pass only the fields to change.")
    def update_issue(
        issue_id: str,
        changes: dict[str, Any],
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        return _dump(tools.update_issue(state.conn, state.actor, issue_id, changes))

    @server.tool(description="Submit an improvement idea for a component")
    def create_idea(
        component_id: str,
        title: str,
        description: str | None = None,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        return _dump(
            tools.create_idea(state.conn, state.actor, component_id, title, description)
        )

    @server.tool(description="Update an idea's votes or implemented flag. Pass only the fields to change.")
    def update_idea(
        idea_id: str,
        changes: dict[str, Any],
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        return _dump(tools.update_idea(state.conn, state.actor, idea_id, changes))

    @server.tool(description="Add a comment to a component's thread")
    def add_comment(
        component_id: str,
        content: str,
        ctx: Context = None,  # type: ignore[assignment]
    ) -> str:
        state = _get_state(ctx)
        return _dump(tools.add_comment(state.conn, state.actor, component_id, content))

    return server


def run_server(user_id: str | None = None, db_path: str | None = None) -> None:
    """Entry point: create server and run on stdio."""
    if db_path:
        os.environ["PROCESS_MAP_DB"] = db_path
    if user_id:
        os.environ["PROCESS_MAP_USER_ID"] = user_id

    server = create_server()
    server.run(transport="stdio")
