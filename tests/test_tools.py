"""Tests for the business operations in process_map.mcp.tools.

Tests call tool functions directly with a test DB connection,
bypassing HTTP and MCP transport.
"""

import json
import sqlite3
from pathlib import Path

import pytest

from db.client import get_connection
from db.migrations import init_db
from process_map.activity import list_activity
from process_map.mcp import tools
from process_map.permissions import Actor


@pytest.fixture()
def conn(tmp_path: Path) -> sqlite3.Connection:
    connection = init_db(tmp_path / "test.db")
    yield connection
    connection.close()


def _seed_user(
    conn: sqlite3.Connection, role: str = "ADMIN", email: str | None = None
) -> Actor:
    email = email or f"{role.lower()}@example.com"
    user = tools.create_user(conn, role.title(), email, role)
    return Actor(id=user["id"], role=role, name=user["name"])


def _seed_component(
    conn: sqlite3.Connection, actor: Actor, title: str = "Web form", section_id: str | None = None
) -> dict:
    if section_id is None:
        section_id = tools.create_section(conn, actor, name="Intake")["id"]
    return tools.create_component(
        conn, actor, title=title, section_id=section_id, owner_id=actor.id
    )


def _log(conn: sqlite3.Connection, entity_type: str, entity_id: str) -> list[dict]:
    return list_activity(conn, entity_type=entity_type, entity_id=entity_id)["activities"]


@pytest.fixture()
def admin(conn: sqlite3.Connection) -> Actor:
    return _seed_user(conn, "ADMIN")


@pytest.fixture()
def viewer(conn: sqlite3.Connection) -> Actor:
    return _seed_user(conn, "VIEWER")


# ── Users ─────────────────────────────────────────────────


class TestUsers:
    def test_create_and_list(self, conn: sqlite3.Connection) -> None:
        tools.create_user(conn, "Bea", "bea@example.com", "MANAGER")
        users = tools.list_users(conn)["users"]
        assert [(u["name"], u["role"]) for u in users] == [("Bea", "MANAGER")]

    def test_duplicate_email_rejected(self, conn: sqlite3.Connection) -> None:
        tools.create_user(conn, "Bea", "bea@example.com")
        result = tools.create_user(conn, "Bea Two", "bea@example.com")
        assert result["error"] == "invalid_input"

    def test_invalid_role_rejected(self, conn: sqlite3.Connection) -> None:
        result = tools.create_user(conn, "Bea", "bea@example.com", "OWNER")
        assert result["error"] == "invalid_input"


# ── Permissions ───────────────────────────────────────────


class TestPermissions:
    def test_no_actor_is_unauthenticated(self, conn: sqlite3.Connection) -> None:
        result = tools.create_section(conn, None, name="Intake")
        assert result["error"] == "unauthenticated"

    def test_viewer_cannot_write(self, conn: sqlite3.Connection, viewer: Actor) -> None:
        result = tools.create_section(conn, viewer, name="Intake")
        assert result["error"] == "forbidden"
        assert conn.execute("SELECT COUNT(*) FROM sections").fetchone()[0] == 0
        assert conn.execute("SELECT COUNT(*) FROM activity_logs").fetchone()[0] == 0

    def test_manager_can_write(self, conn: sqlite3.Connection) -> None:
        manager = _seed_user(conn, "MANAGER")
        assert "error" not in tools.create_section(conn, manager, name="Intake")


# ── Sections ──────────────────────────────────────────────


class TestSections:
    def test_order_defaults_to_next(self, conn: sqlite3.Connection, admin: Actor) -> None:
        first = tools.create_section(conn, admin, name="One")
        second = tools.create_section(conn, admin, name="Two")
        assert first["order"] == 0
        assert second["order"] == 1

    def test_colliding_order_rejected(self, conn: sqlite3.Connection, admin: Actor) -> None:
        tools.create_section(conn, admin, name="One", order=1)
        result = tools.create_section(conn, admin, name="Dup", order=1)
        assert result["error"] == "invalid_input"
        assert conn.execute("SELECT COUNT(*) FROM sections").fetchone()[0] == 1

    def test_list_includes_components_and_counts(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        tools.create_todo(conn, admin, component["id"], "Call back")
        sections = tools.list_sections(conn)["sections"]
        assert len(sections) == 1
        listed = sections[0]["components"][0]
        assert listed["owner"]["id"] == admin.id
        assert listed["counts"]["todos"] == 1

    def test_update_logs_supplied_fields(self, conn: sqlite3.Connection, admin: Actor) -> None:
        section = tools.create_section(conn, admin, name="One")
        updated = tools.update_section(conn, admin, section["id"], {"color": "#fff"})
        assert updated["color"] == "#fff"
        log = _log(conn, "section", section["id"])
        assert log[0]["action"] == "updated"
        assert log[0]["changes"] == {"color": "#fff"}

    def test_delete_with_components_rejected(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        result = tools.delete_section(conn, admin, component["section_id"])
        assert result["error"] == "invalid_input"

    def test_delete_empty_section(self, conn: sqlite3.Connection, admin: Actor) -> None:
        section = tools.create_section(conn, admin, name="One", order=4)
        assert tools.delete_section(conn, admin, section["id"]) == {"success": True}
        log = _log(conn, "section", section["id"])
        assert log[0]["changes"] == {"name": "One", "order": 4}


# ── Components ────────────────────────────────────────────


class TestComponents:
    def test_create_defaults_to_gray(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        assert component["health_status"] == "GRAY"
        assert component["section"]["name"] == "Intake"
        log = _log(conn, "component", component["id"])
        assert log[0]["changes"]["title"] == "Web form"

    def test_create_with_missing_section(self, conn: sqlite3.Connection, admin: Actor) -> None:
        result = tools.create_component(
            conn, admin, title="X", section_id="nope", owner_id=admin.id
        )
        assert result["error"] == "not_found"

    def test_create_with_missing_owner(self, conn: sqlite3.Connection, admin: Actor) -> None:
        section = tools.create_section(conn, admin, name="Intake")
        result = tools.create_component(
            conn, admin, title="X", section_id=section["id"], owner_id="ghost"
        )
        assert result["error"] == "not_found"

    def test_invalid_health_rejected(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        result = tools.update_component(
            conn, admin, component["id"], {"health_status": "PURPLE"}
        )
        assert result["error"] == "invalid_input"

    def test_partial_update_keeps_other_fields(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        tools.update_component(conn, admin, component["id"], {"tool": "n8n"})
        updated = tools.update_component(
            conn, admin, component["id"], {"health_status": "YELLOW"}
        )
        assert updated["tool"] == "n8n"
        assert updated["health_status"] == "YELLOW"

    def test_supplied_null_clears_field(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        tools.update_component(conn, admin, component["id"], {"tool": "n8n"})
        updated = tools.update_component(conn, admin, component["id"], {"tool": None})
        assert updated["tool"] is None

    def test_unknown_field_rejected(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        result = tools.update_component(conn, admin, component["id"], {"id": "x"})
        assert result["error"] == "invalid_input"

    def test_list_ordered_by_section_order(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        later = tools.create_section(conn, admin, name="Later", order=5)
        earlier = tools.create_section(conn, admin, name="Earlier", order=1)
        _seed_component(conn, admin, "B", later["id"])
        _seed_component(conn, admin, "A", earlier["id"])
        titles = [c["title"] for c in tools.list_components(conn)["components"]]
        assert titles == ["A", "B"]

    def test_list_filters(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        tools.update_component(conn, admin, component["id"], {"health_status": "RED"})
        _seed_component(conn, admin, "Other", component["section_id"])
        red = tools.list_components(conn, health_status="RED")["components"]
        assert [c["title"] for c in red] == ["Web form"]

    def test_list_shows_only_open_todos(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        done = tools.create_todo(conn, admin, component["id"], "Done")
        tools.create_todo(conn, admin, component["id"], "Open")
        tools.update_todo(conn, admin, done["id"], {"completed": True})
        listed = tools.list_components(conn)["components"][0]
        assert [t["title"] for t in listed["todos"]] == ["Open"]
        assert listed["counts"]["todos"] == 2

    def test_detail_includes_children(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        other = _seed_component(conn, admin, "Next", component["section_id"])
        tools.create_metric(conn, admin, component["id"], "Leads", "50", "45")
        tools.create_issue(conn, admin, component["id"], "Slow")
        tools.add_comment(conn, admin, component["id"], "Hi")
        tools.create_connection(conn, admin, component["id"], other["id"], "Handoff")

        detail = tools.get_component(conn, component["id"])
        assert [m["name"] for m in detail["metrics"]] == ["Leads"]
        assert detail["issues"][0]["reported_by"]["id"] == admin.id
        assert detail["comments"][0]["author"]["id"] == admin.id
        assert detail["connections_from"][0]["to_component"]["title"] == "Next"
        assert tools.get_component(conn, other["id"])["connections_to"][0]["label"] == "Handoff"

    def test_delete_cascades_and_logs(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        todo = tools.create_todo(conn, admin, component["id"], "Call back")

        assert tools.delete_component(conn, admin, component["id"]) == {"success": True}
        assert tools.get_component(conn, component["id"])["error"] == "not_found"
        assert tools.get_todo(conn, todo["id"])["error"] == "not_found"

        deleted = [a for a in _log(conn, "component", component["id"]) if a["action"] == "deleted"]
        assert len(deleted) == 1
        assert deleted[0]["changes"]["title"] == "Web form"

    def test_health_reports_both_statuses(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        tools.update_component(conn, admin, component["id"], {"health_status": "GREEN"})
        for name, target, current in [("a", "50", "45"), ("b", "85", "82"), ("c", "2hrs", "3hrs")]:
            tools.create_metric(conn, admin, component["id"], name, target, current)

        health = tools.get_component_health(conn, component["id"])
        assert health["health_status"] == "GREEN"
        assert health["computed_status"] == "RED"
        assert (health["metrics_meeting_target"], health["metrics_total"]) == (1, 3)
        # computing never writes back
        assert tools.get_component(conn, component["id"])["health_status"] == "GREEN"


# ── Metrics ───────────────────────────────────────────────


class TestMetrics:
    def test_order_appends(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        for i in range(3):
            tools.create_metric(conn, admin, component["id"], f"m{i}", order=i)
        metric = tools.create_metric(conn, admin, component["id"], "m3")
        assert metric["order"] == 3

    def test_first_metric_gets_zero(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        assert tools.create_metric(conn, admin, component["id"], "m")["order"] == 0

    def test_duplicate_order_rejected(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        tools.create_metric(conn, admin, component["id"], "a", order=0)
        result = tools.create_metric(conn, admin, component["id"], "b", order=0)
        assert result["error"] == "invalid_input"

    def test_missing_component(self, conn: sqlite3.Connection, admin: Actor) -> None:
        assert tools.create_metric(conn, admin, "gone", "m")["error"] == "not_found"

    def test_update_and_delete(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        metric = tools.create_metric(conn, admin, component["id"], "Leads", "50", "45")
        updated = tools.update_metric(conn, admin, metric["id"], {"current": "55"})
        assert updated["current"] == "55"
        assert updated["target"] == "50"

        assert tools.delete_metric(conn, admin, metric["id"]) == {"success": True}
        log = _log(conn, "metric", metric["id"])
        assert log[0]["action"] == "deleted"
        assert log[0]["changes"] == {"name": "Leads"}


# ── Todos ─────────────────────────────────────────────────


class TestTodos:
    def test_complete_and_uncomplete(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        todo = tools.create_todo(conn, admin, component["id"], "Call back")
        assert todo["completed"] is False
        assert todo["completed_at"] is None

        done = tools.update_todo(conn, admin, todo["id"], {"completed": True})
        assert done["completed"] is True
        assert done["completed_at"] is not None

        undone = tools.update_todo(conn, admin, todo["id"], {"completed": False})
        assert undone["completed_at"] is None

        actions = [a["action"] for a in _log(conn, "todo", todo["id"])]
        assert actions == ["uncompleted", "completed", "created"]

    def test_title_update_keeps_completed_at(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        todo = tools.create_todo(conn, admin, component["id"], "Call back")
        done = tools.update_todo(conn, admin, todo["id"], {"completed": True})

        renamed = tools.update_todo(conn, admin, todo["id"], {"title": "Call back today"})
        assert renamed["completed_at"] == done["completed_at"]
        log = _log(conn, "todo", todo["id"])
        assert log[0]["action"] == "updated"
        assert log[0]["changes"] == {"title": "Call back today"}

    def test_completed_payload_includes_timestamp(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        todo = tools.create_todo(conn, admin, component["id"], "Call back")
        done = tools.update_todo(conn, admin, todo["id"], {"completed": True})
        changes = _log(conn, "todo", todo["id"])[0]["changes"]
        assert changes == {"completed": True, "completed_at": done["completed_at"]}

    def test_unknown_assignee(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        result = tools.create_todo(conn, admin, component["id"], "X", assignee_id="ghost")
        assert result["error"] == "not_found"

    def test_assignee_shown(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        todo = tools.create_todo(conn, admin, component["id"], "X", assignee_id=admin.id)
        assert todo["assignee"]["email"] == "admin@example.com"

    def test_list_ordering(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        done = tools.create_todo(conn, admin, component["id"], "Done")
        tools.create_todo(conn, admin, component["id"], "Later", due_date="2025-12-01")
        tools.create_todo(conn, admin, component["id"], "Soon", due_date="2025-11-01")
        tools.update_todo(conn, admin, done["id"], {"completed": True})

        titles = [t["title"] for t in tools.list_todos(conn)["todos"]]
        assert titles == ["Soon", "Later", "Done"]
        open_titles = [t["title"] for t in tools.list_todos(conn, completed=False)["todos"]]
        assert open_titles == ["Soon", "Later"]

    def test_invalid_completed_value(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        todo = tools.create_todo(conn, admin, component["id"], "X")
        result = tools.update_todo(conn, admin, todo["id"], {"completed": "yes"})
        assert result["error"] == "invalid_input"

    def test_delete(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        todo = tools.create_todo(conn, admin, component["id"], "X")
        assert tools.delete_todo(conn, admin, todo["id"]) == {"success": True}
        assert tools.delete_todo(conn, admin, todo["id"])["error"] == "not_found"


# ── Issues ────────────────────────────────────────────────


class TestIssues:
    def test_defaults(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        issue = tools.create_issue(conn, admin, component["id"], "Slow")
        assert issue["priority"] == "P2"
        assert issue["status"] == "OPEN"
        assert issue["resolved_at"] is None
        assert issue["reported_by_id"] == admin.id

    def test_created_resolved_has_resolved_at(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        issue = tools.create_issue(conn, admin, component["id"], "Old", status="RESOLVED")
        assert issue["resolved_at"] is not None

    def test_resolve_and_reopen(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        issue = tools.create_issue(conn, admin, component["id"], "Slow")

        resolved = tools.update_issue(conn, admin, issue["id"], {"status": "RESOLVED"})
        assert resolved["resolved_at"] is not None
        changes = _log(conn, "issue", issue["id"])[0]["changes"]
        assert changes["old_status"] == "OPEN"
        assert changes["new_status"] == "RESOLVED"

        reopened = tools.update_issue(conn, admin, issue["id"], {"status": "OPEN"})
        assert reopened["resolved_at"] is None
        assert _log(conn, "issue", issue["id"])[0]["action"] == "status_changed"

    def test_priority_only_update_is_plain(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        issue = tools.create_issue(conn, admin, component["id"], "Slow")
        tools.update_issue(conn, admin, issue["id"], {"priority": "P1"})
        assert _log(conn, "issue", issue["id"])[0]["action"] == "updated"

    def test_invalid_values_rejected(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        assert tools.create_issue(conn, admin, component["id"], "X", priority="P9")["error"] == (
            "invalid_input"
        )
        issue = tools.create_issue(conn, admin, component["id"], "X")
        result = tools.update_issue(conn, admin, issue["id"], {"status": "CLOSED"})
        assert result["error"] == "invalid_input"

    def test_list_by_priority(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        tools.create_issue(conn, admin, component["id"], "Low", priority="P4")
        tools.create_issue(conn, admin, component["id"], "Urgent", priority="P1")
        titles = [i["title"] for i in tools.list_issues(conn)["issues"]]
        assert titles == ["Urgent", "Low"]
        assert len(tools.list_issues(conn, priority="P4")["issues"]) == 1

    def test_delete_payload(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        issue = tools.create_issue(conn, admin, component["id"], "Slow", priority="P1")
        tools.delete_issue(conn, admin, issue["id"])
        changes = _log(conn, "issue", issue["id"])[0]["changes"]
        assert changes == {"title": "Slow", "priority": "P1"}


# ── Ideas ─────────────────────────────────────────────────


class TestIdeas:
    def test_create_defaults(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        idea = tools.create_idea(conn, admin, component["id"], "Chatbot")
        assert idea["votes"] == 0
        assert idea["implemented"] is False
        assert idea["submitted_by"]["id"] == admin.id

    def test_negative_votes_rejected(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        idea = tools.create_idea(conn, admin, component["id"], "Chatbot")
        result = tools.update_idea(conn, admin, idea["id"], {"votes": -1})
        assert result["error"] == "invalid_input"
        assert tools.get_idea(conn, idea["id"])["votes"] == 0

    def test_mark_implemented_verbs(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        idea = tools.create_idea(conn, admin, component["id"], "Chatbot")
        tools.update_idea(conn, admin, idea["id"], {"implemented": True})
        tools.update_idea(conn, admin, idea["id"], {"implemented": False})
        tools.update_idea(conn, admin, idea["id"], {"votes": 2})
        actions = [a["action"] for a in _log(conn, "idea", idea["id"])]
        assert actions == ["updated", "marked_not_implemented", "marked_implemented", "created"]

    def test_list_ordering(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        done = tools.create_idea(conn, admin, component["id"], "Done")
        popular = tools.create_idea(conn, admin, component["id"], "Popular")
        tools.create_idea(conn, admin, component["id"], "New")
        tools.update_idea(conn, admin, done["id"], {"implemented": True, "votes": 9})
        tools.update_idea(conn, admin, popular["id"], {"votes": 4})
        titles = [i["title"] for i in tools.list_ideas(conn)["ideas"]]
        assert titles == ["Popular", "New", "Done"]

    def test_delete_payload(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        idea = tools.create_idea(conn, admin, component["id"], "Chatbot")
        tools.update_idea(conn, admin, idea["id"], {"votes": 3})
        tools.delete_idea(conn, admin, idea["id"])
        assert _log(conn, "idea", idea["id"])[0]["changes"] == {"title": "Chatbot", "votes": 3}


# ── Comments ──────────────────────────────────────────────


class TestComments:
    def test_author_can_edit_own(self, conn: sqlite3.Connection) -> None:
        manager = _seed_user(conn, "MANAGER")
        component = _seed_component(conn, manager)
        comment = tools.add_comment(conn, manager, component["id"], "Hello")
        updated = tools.update_comment(conn, manager, comment["id"], "Hello again")
        assert updated["content"] == "Hello again"

    def test_other_manager_can_edit(self, conn: sqlite3.Connection, admin: Actor) -> None:
        manager = _seed_user(conn, "MANAGER")
        component = _seed_component(conn, admin)
        comment = tools.add_comment(conn, admin, component["id"], "Hello")
        assert "error" not in tools.update_comment(conn, manager, comment["id"], "Edited")

    def test_viewer_cannot_edit_others(
        self, conn: sqlite3.Connection, admin: Actor, viewer: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        comment = tools.add_comment(conn, admin, component["id"], "Hello")
        assert tools.update_comment(conn, viewer, comment["id"], "Hijack")["error"] == "forbidden"
        assert tools.delete_comment(conn, viewer, comment["id"])["error"] == "forbidden"

    def test_viewer_cannot_add(
        self, conn: sqlite3.Connection, admin: Actor, viewer: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        assert tools.add_comment(conn, viewer, component["id"], "Hi")["error"] == "forbidden"

    def test_delete_payload_is_preview(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        comment = tools.add_comment(conn, admin, component["id"], "x" * 150)
        tools.delete_comment(conn, admin, comment["id"])
        changes = _log(conn, "comment", comment["id"])[0]["changes"]
        assert changes == {"content_preview": "x" * 100}

    def test_empty_content_rejected(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        assert tools.add_comment(conn, admin, component["id"], "")["error"] == "invalid_input"


# ── Connections ───────────────────────────────────────────


class TestConnections:
    def test_create_list_delete(self, conn: sqlite3.Connection, admin: Actor) -> None:
        a = _seed_component(conn, admin, "A")
        b = _seed_component(conn, admin, "B", a["section_id"])
        connection = tools.create_connection(conn, admin, a["id"], b["id"], "Handoff")
        listed = tools.list_connections(conn, component_id=b["id"])["connections"]
        assert listed[0]["from_component"]["title"] == "A"

        assert tools.delete_connection(conn, admin, connection["id"]) == {"success": True}
        assert tools.list_connections(conn)["connections"] == []
        log = _log(conn, "connection", connection["id"])
        assert [entry["action"] for entry in log] == ["deleted", "created"]

    def test_missing_endpoint(self, conn: sqlite3.Connection, admin: Actor) -> None:
        a = _seed_component(conn, admin, "A")
        result = tools.create_connection(conn, admin, a["id"], "ghost")
        assert result["error"] == "not_found"


# ── Snapshots, dashboard and graph ────────────────────────


class TestSnapshots:
    def test_snapshot_freezes_map(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        snapshot = tools.create_snapshot(conn, admin, "Baseline")
        tools.update_component(conn, admin, component["id"], {"title": "Renamed"})

        stored = tools.get_snapshot(conn, snapshot["id"])
        assert stored["data"][0]["components"][0]["title"] == "Web form"
        assert "data" not in tools.list_snapshots(conn)["snapshots"][0]

        changes = _log(conn, "snapshot", snapshot["id"])[0]["changes"]
        assert changes == {"name": "Baseline", "component_count": 1}

    def test_snapshot_data_is_json(self, conn: sqlite3.Connection, admin: Actor) -> None:
        _seed_component(conn, admin)
        snapshot = tools.create_snapshot(conn, admin, "Baseline")
        raw = conn.execute(
            "SELECT data FROM snapshots WHERE id = ?", (snapshot["id"],)
        ).fetchone()["data"]
        assert isinstance(json.loads(raw), list)

    def test_missing_snapshot(self, conn: sqlite3.Connection) -> None:
        assert tools.get_snapshot(conn, "nope")["error"] == "not_found"


class TestDashboard:
    def test_empty(self, conn: sqlite3.Connection) -> None:
        dashboard = tools.get_dashboard(conn)
        assert dashboard["overall_health"] == 0
        assert dashboard["total_components"] == 0
        assert dashboard["recent_activity"] == []

    def test_counts(self, conn: sqlite3.Connection, admin: Actor) -> None:
        green = _seed_component(conn, admin, "Green")
        red = _seed_component(conn, admin, "Red", green["section_id"])
        tools.update_component(conn, admin, green["id"], {"health_status": "GREEN"})
        tools.update_component(conn, admin, red["id"], {"health_status": "RED"})
        tools.create_todo(conn, admin, green["id"], "Open")
        issue = tools.create_issue(conn, admin, red["id"], "Broken")
        tools.create_issue(conn, admin, red["id"], "Fixed", status="RESOLVED")
        tools.create_idea(conn, admin, red["id"], "Fix it")

        dashboard = tools.get_dashboard(conn)
        assert dashboard["overall_health"] == 60
        assert dashboard["components_by_health"]["GREEN"] == 1
        assert dashboard["components_by_health"]["RED"] == 1
        assert dashboard["active_todos"] == 1
        assert dashboard["open_issues"] == 1
        assert dashboard["pending_ideas"] == 1
        assert len(dashboard["recent_activity"]) == 9
        assert dashboard["recent_activity"][0]["entity_type"] == "idea"
        assert issue["status"] == "OPEN"


class TestProcessGraph:
    def test_graph_nodes_and_edges(self, conn: sqlite3.Connection, admin: Actor) -> None:
        a = _seed_component(conn, admin, "A")
        b = _seed_component(conn, admin, "B", a["section_id"])
        tools.create_connection(conn, admin, b["id"], a["id"], "Loop back")
        graph = tools.get_process_graph(conn)
        assert [(n["title"], n["x"], n["y"]) for n in graph["nodes"]] == [
            ("A", 150, 100),
            ("B", 430, 100),
        ]
        kinds = sorted(e["kind"] for e in graph["edges"])
        assert kinds == ["connection", "flow"]


# ── Patch validation ──────────────────────────────────────


class TestPatchValidation:
    def test_list_value_rejected_before_write(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        todo = tools.create_todo(conn, admin, component["id"], "Call back")
        result = tools.update_todo(conn, admin, todo["id"], {"description": ["x"]})
        assert result["error"] == "invalid_input"
        assert "description" in result["message"]
        assert tools.get_todo(conn, todo["id"])["description"] is None
        assert [a["action"] for a in _log(conn, "todo", todo["id"])] == ["created"]

    def test_object_value_rejected_before_write(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        component = _seed_component(conn, admin)
        metric = tools.create_metric(conn, admin, component["id"], "Leads", "50", "45")
        result = tools.update_metric(conn, admin, metric["id"], {"current": {"v": 1}})
        assert result["error"] == "invalid_input"
        assert tools.get_metric(conn, metric["id"])["current"] == "45"
        assert [a["action"] for a in _log(conn, "metric", metric["id"])] == ["created"]

    def test_bool_votes_rejected(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        idea = tools.create_idea(conn, admin, component["id"], "Chatbot")
        result = tools.update_idea(conn, admin, idea["id"], {"votes": True})
        assert result["error"] == "invalid_input"
        assert tools.get_idea(conn, idea["id"])["votes"] == 0

    def test_numeric_string_order_rejected(
        self, conn: sqlite3.Connection, admin: Actor
    ) -> None:
        section = tools.create_section(conn, admin, name="One")
        result = tools.update_section(conn, admin, section["id"], {"order": "3"})
        assert result["error"] == "invalid_input"
        assert tools.get_section(conn, section["id"])["order"] == 0

    def test_integer_position_accepted(self, conn: sqlite3.Connection, admin: Actor) -> None:
        component = _seed_component(conn, admin)
        updated = tools.update_component(conn, admin, component["id"], {"position_x": 120})
        assert updated["position_x"] == 120

    @pytest.mark.parametrize("field", ["section_id", "owner_id"])
    def test_null_required_reference_is_invalid(
        self, conn: sqlite3.Connection, admin: Actor, field: str
    ) -> None:
        component = _seed_component(conn, admin)
        result = tools.update_component(conn, admin, component["id"], {field: None})
        assert result["error"] == "invalid_input"
        assert result["message"] == f"'{field}' cannot be empty"
        assert tools.get_component(conn, component["id"])[field] == component[field]


# ── Concurrent writers ────────────────────────────────────


def _insert_section(conn: sqlite3.Connection, order: int) -> None:
    now = "2026-01-01T00:00:00+00:00"
    with conn:
        conn.execute(
            'INSERT INTO sections (id, name, "order", created_at, updated_at) '
            "VALUES (?, ?, ?, ?, ?)",
            (f"theirs-{order}", "Theirs", order, now, now),
        )


@pytest.fixture()
def other_conn(tmp_path: Path, conn: sqlite3.Connection) -> sqlite3.Connection:
    connection = get_connection(tmp_path / "test.db")
    yield connection
    connection.close()


class TestOrderRaces:
    """Another writer commits the same order between the check and the write."""

    def test_create_section_loses_race(
        self,
        conn: sqlite3.Connection,
        other_conn: sqlite3.Connection,
        admin: Actor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        real_check = tools._section_order_taken
        calls = []

        def _check(c, order, exclude_id=None):
            calls.append(order)
            if len(calls) == 1:
                _insert_section(other_conn, order)
                return False
            return real_check(c, order, exclude_id)

        monkeypatch.setattr(tools, "_section_order_taken", _check)
        result = tools.create_section(conn, admin, name="Mine", order=7)

        assert result["error"] == "invalid_input"
        assert result["message"] == "Section with order 7 already exists"
        names = [r["name"] for r in conn.execute("SELECT name FROM sections")]
        assert names == ["Theirs"]
        assert list_activity(conn, entity_type="section")["activities"] == []

    def test_update_section_loses_race(
        self,
        conn: sqlite3.Connection,
        other_conn: sqlite3.Connection,
        admin: Actor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        section = tools.create_section(conn, admin, name="Mine", order=1)
        real_check = tools._section_order_taken
        calls = []

        def _check(c, order, exclude_id=None):
            calls.append(order)
            if len(calls) == 1:
                _insert_section(other_conn, order)
                return False
            return real_check(c, order, exclude_id)

        monkeypatch.setattr(tools, "_section_order_taken", _check)
        result = tools.update_section(conn, admin, section["id"], {"order": 9})

        assert result["error"] == "invalid_input"
        assert tools.get_section(conn, section["id"])["order"] == 1
        assert [a["action"] for a in _log(conn, "section", section["id"])] == ["created"]

    def test_create_metric_loses_race(
        self,
        conn: sqlite3.Connection,
        other_conn: sqlite3.Connection,
        admin: Actor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        component = _seed_component(conn, admin)
        real_check = tools._metric_order_taken
        calls = []

        def _check(c, component_id, order, exclude_id=None):
            calls.append(order)
            if len(calls) == 1:
                now = "2026-01-01T00:00:00+00:00"
                with other_conn:
                    other_conn.execute(
                        'INSERT INTO metrics (id, component_id, name, "order", '
                        "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                        ("theirs", component_id, "Theirs", order, now, now),
                    )
                return False
            return real_check(c, component_id, order, exclude_id)

        monkeypatch.setattr(tools, "_metric_order_taken", _check)
        result = tools.create_metric(conn, admin, component["id"], "Mine", order=2)

        assert result["error"] == "invalid_input"
        names = [m["name"] for m in tools.list_metrics(conn, component["id"])["metrics"]]
        assert names == ["Theirs"]
        assert list_activity(conn, entity_type="metric")["activities"] == []
