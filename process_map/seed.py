"""Demo data for a fresh process-map database.

Everything goes through the business operations, so the activity log is
populated the same way real edits populate it.

Usage:
    process-map seed
"""

import logging
import sqlite3
from typing import Any

from process_map.mcp import tools
from process_map.permissions import Actor

logger = logging.getLogger(__name__)

USERS = [
    {"key": "david", "name": "David Milliken", "email": "david@horizonhomes.com", "role": "ADMIN"},
    {"key": "kristie", "name": "Kristie", "email": "kristie@horizonhomes.com", "role": "MANAGER"},
    {"key": "cody", "name": "Cody", "email": "cody@horizonhomes.com", "role": "MANAGER"},
]

SECTIONS = [
    {"key": "lead", "name": "Lead Generation", "order": 1, "color": "#3B82F6",
     "description": "Initial customer contact and qualification"},
    {"key": "sales", "name": "Sales & Estimation", "order": 2, "color": "#10B981",
     "description": "Consultation, estimation, and closing"},
    {"key": "production", "name": "Production & Installation", "order": 3, "color": "#F59E0B",
     "description": "Scheduling, preparation, and installation"},
    {"key": "post", "name": "Post-Install & Service", "order": 4, "color": "#8B5CF6",
     "description": "Follow-up, warranty, and ongoing relationship"},
]

# metrics: (name, target, current, unit); todos: (title, assignee);
# issues: (title, priority); ideas: (title, votes)
COMPONENTS: list[dict[str, Any]] = [
    {
        "key": "web_form",
        "section": "lead",
        "owner": "kristie",
        "title": "Web Form Lead Capture",
        "tool": "WordPress Gravity Forms -> n8n",
        "health_status": "GREEN",
        "current_state": "Zapier -> Pipedrive working well, but expensive",
        "target_state": "n8n -> Twenty CRM with auto-reply and assignment",
        "metrics": [
            ("Monthly leads", "50", "45", "leads"),
            ("Form completion rate", "85", "82", "%"),
            ("Time to contact", "2", "3", "hrs"),
        ],
        "todos": [
            ("Migrate from Zapier to n8n", "david"),
            ("Build auto-reply email template", "david"),
        ],
        "issues": [("3-hour response time exceeds target", "P2")],
        "ideas": [("Add chatbot for instant engagement", 3), ("A/B test shorter form", 2)],
    },
    {
        "key": "ad_phone",
        "section": "lead",
        "owner": "kristie",
        "title": "Google Ads Phone Line",
        "tool": "Tracking number -> n8n",
        "health_status": "RED",
        "current_state": "Manual tracking, poor conversion tracking",
        "target_state": "Auto-tagged in CRM with ad campaign data",
        "metrics": [
            ("Monthly calls", "15", "8", "calls"),
            ("Cost per call", "45", "78", "$"),
            ("Conversion rate", "55", "38", "%"),
        ],
        "todos": [],
        "issues": [
            ("Call volume down 47% month-over-month", "P1"),
            ("Conversion rate below break-even", "P1"),
        ],
        "ideas": [("Pause Google Ads and focus on SEO", 2)],
    },
    {
        "key": "qualification",
        "section": "lead",
        "owner": "kristie",
        "title": "Lead Qualification",
        "tool": "Twenty CRM + Phone",
        "health_status": "GREEN",
        "current_state": "Manual process with good results",
        "target_state": "Scripted templates with auto-logging",
        "metrics": [
            ("Qualification rate", "70", "72", "%"),
            ("Follow-up booking rate", "85", "88", "%"),
        ],
        "todos": [("Create qualification script templates", "kristie")],
        "issues": [],
        "ideas": [],
    },
    {
        "key": "estimate",
        "section": "sales",
        "owner": "cody",
        "title": "Estimate Preparation",
        "tool": "Custom estimator spreadsheet",
        "health_status": "YELLOW",
        "current_state": "Spreadsheet estimates, frequent revisions",
        "target_state": "Estimator fed directly by energy audit data",
        "metrics": [("Days to deliver estimate", "2", "4", "days")],
        "todos": [],
        "issues": [("Taking too long to deliver estimates", "P2")],
        "ideas": [("Integrate energy audit data into estimator", 3)],
    },
    {
        "key": "followup",
        "section": "sales",
        "owner": "cody",
        "title": "Estimate Follow-Up",
        "tool": "Manual reminders",
        "health_status": "RED",
        "current_state": "Ad hoc follow-up when remembered",
        "target_state": "Automated follow-up sequence",
        "metrics": [("Estimates followed up", "95", "45", "%")],
        "todos": [],
        "issues": [("Only 45% of estimates getting follow-up", "P1")],
        "ideas": [("Build automated follow-up sequence in n8n", 5)],
    },
    {
        "key": "scheduling",
        "section": "production",
        "owner": "cody",
        "title": "Installation Scheduling",
        "tool": "Google Calendar",
        "health_status": "YELLOW",
        "current_state": "Shared calendar, manual crew assignment",
        "target_state": "Crew scheduling tool with customer confirmations",
        "metrics": [],
        "todos": [("Research Cal.com for crew scheduling", "david")],
        "issues": [],
        "ideas": [],
    },
    {
        "key": "warranty",
        "section": "post",
        "owner": "cody",
        "title": "Warranty Registration",
        "tool": "Manufacturer portals",
        "health_status": "RED",
        "current_state": "Registered by hand, often missed",
        "target_state": "Registered automatically from install records",
        "metrics": [("Installs registered", "100", "60", "%")],
        "todos": [],
        "issues": [("Warranties not registered after install", "P1")],
        "ideas": [],
    },
]

CONNECTIONS = [
    ("web_form", "qualification", "Lead data + form responses"),
    ("ad_phone", "qualification", "Call log + ad source tag"),
    ("qualification", "estimate", "Qualified lead + home info"),
    ("estimate", "followup", "Estimate delivered trigger"),
    ("followup", "scheduling", "Won deal + project scope"),
    ("scheduling", "warranty", "Equipment serial numbers"),
]

COMMENTS = [
    ("ad_phone", "kristie",
     "We need to address this ASAP. Losing money on every ad call is not sustainable."),
    ("followup", "cody",
     "I know the follow-up rate is bad. Really need that automation David mentioned."),
    ("web_form", "david",
     "Good news - the n8n migration is almost ready to test."),
]


def _checked(result: dict[str, Any]) -> dict[str, Any]:
    if "error" in result:
        raise RuntimeError(f"Seed step failed: {result['message']}")
    return result


def seed_demo(conn: sqlite3.Connection) -> dict[str, int]:
    """Populate an empty database. Returns counts of what was created.

    Raises:
        RuntimeError: If the database already has users or a step fails.
    """
    if conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]:
        raise RuntimeError("Database already has users; seed only runs on an empty database")

    actors: dict[str, Actor] = {}
    for user in USERS:
        created = _checked(tools.create_user(conn, user["name"], user["email"], user["role"]))
        actors[user["key"]] = Actor(id=created["id"], role=user["role"], name=user["name"])
    admin = actors["david"]

    section_ids = {}
    for section in SECTIONS:
        created = _checked(
            tools.create_section(
                conn,
                admin,
                name=section["name"],
                color=section["color"],
                description=section["description"],
                order=section["order"],
            )
        )
        section_ids[section["key"]] = created["id"]

    component_ids = {}
    for entry in COMPONENTS:
        owner = actors[entry["owner"]]
        component = _checked(
            tools.create_component(
                conn,
                admin,
                title=entry["title"],
                section_id=section_ids[entry["section"]],
                owner_id=owner.id,
                tool=entry["tool"],
                health_status=entry["health_status"],
                current_state=entry["current_state"],
                target_state=entry["target_state"],
            )
        )
        component_id = component["id"]
        component_ids[entry["key"]] = component_id

        for name, target, current, unit in entry["metrics"]:
            _checked(tools.create_metric(conn, owner, component_id, name, target, current, unit))
        for title, assignee in entry["todos"]:
            _checked(
                tools.create_todo(conn, owner, component_id, title, assignee_id=actors[assignee].id)
            )
        for title, priority in entry["issues"]:
            _checked(tools.create_issue(conn, owner, component_id, title, priority=priority))
        for title, votes in entry["ideas"]:
            idea = _checked(tools.create_idea(conn, admin, component_id, title))
            if votes:
                _checked(tools.update_idea(conn, admin, idea["id"], {"votes": votes}))

    for source, target, label in CONNECTIONS:
        _checked(
            tools.create_connection(
                conn, admin, component_ids[source], component_ids[target], label
            )
        )

    for component_key, author, content in COMMENTS:
        _checked(tools.add_comment(conn, actors[author], component_ids[component_key], content))

    _checked(tools.create_snapshot(conn, admin, "Initial Snapshot"))

    counts = {
        "users": len(USERS),
        "sections": len(SECTIONS),
        "components": len(COMPONENTS),
        "connections": len(CONNECTIONS),
        "comments": len(COMMENTS),
    }
    logger.info("Seeded demo data: %s", counts)
    return counts
