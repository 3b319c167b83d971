"""Database table definitions for process-map.

Raw DDL keeps migrations simple and explicit. ``activity_logs.entity_id``
is deliberately not a foreign key: log rows outlive the entities they
describe.
"""

TABLES = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            email       TEXT NOT NULL UNIQUE,
            role        TEXT NOT NULL DEFAULT 'VIEWER',
            created_at  TEXT NOT NULL
        )
    """,
    "sections": """
        CREATE TABLE IF NOT EXISTS sections (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            "order"     INTEGER NOT NULL UNIQUE,
            color       TEXT,
            description TEXT,
            created_at  TEXT NOT NULL,
            updated_at  TEXT NOT NULL
        )
    """,
    "components": """
        CREATE TABLE IF NOT EXISTS components (
            id            TEXT PRIMARY KEY,
            title         TEXT NOT NULL,
            section_id    TEXT NOT NULL REFERENCES sections(id),
            owner_id      TEXT NOT NULL REFERENCES users(id),
            tool          TEXT,
            health_status TEXT NOT NULL DEFAULT 'GRAY',
            current_state TEXT,
            target_state  TEXT,
            position_x    REAL,
            position_y    REAL,
            created_at    TEXT NOT NULL,
            updated_at    TEXT NOT NULL
        )
    """,
    "metrics": """
        CREATE TABLE IF NOT EXISTS metrics (
            id           TEXT PRIMARY KEY,
            component_id TEXT NOT NULL REFERENCES components(id) ON DELETE CASCADE,
            name         TEXT NOT NULL,
            target       TEXT,
            current      TEXT,
            unit         TEXT,
            "order"      INTEGER NOT NULL,
            created_at   TEXT NOT NULL,
            updated_at   TEXT NOT NULL,
            UNIQUE(component_id, "order")
        )
    """,
    "todos": """
        CREATE TABLE IF NOT EXISTS todos (
            id           TEXT PRIMARY KEY,
            component_id TEXT NOT NULL REFERENCES components(id) ON DELETE CASCADE,
            title        TEXT NOT NULL,
            description  TEXT,
            assignee_id  TEXT REFERENCES users(id),
            due_date     TEXT,
            completed    INTEGER NOT NULL DEFAULT 0,
            completed_at TEXT,
            created_at   TEXT NOT NULL,
            updated_at   TEXT NOT NULL
        )
    """,
    "issues": """
        CREATE TABLE IF NOT EXISTS issues (
            id             TEXT PRIMARY KEY,
            component_id   TEXT NOT NULL REFERENCES components(id) ON DELETE CASCADE,
            title          TEXT NOT NULL,
            description    TEXT,
            priority       TEXT NOT NULL DEFAULT 'P2',
            status         TEXT NOT NULL DEFAULT 'OPEN',
            reported_by_id TEXT NOT NULL REFERENCES users(id),
            resolved_at    TEXT,
            created_at     TEXT NOT NULL,
            updated_at     TEXT NOT NULL
        )
    """,
    "ideas": """
        CREATE TABLE IF NOT EXISTS ideas (
            id              TEXT PRIMARY KEY,
            component_id    TEXT NOT NULL REFERENCES components(id) ON DELETE CASCADE,
            title           TEXT NOT NULL,
            description     TEXT,
            votes           INTEGER NOT NULL DEFAULT 0 CHECK (votes >= 0),
            implemented     INTEGER NOT NULL DEFAULT 0,
            submitted_by_id TEXT NOT NULL REFERENCES users(id),
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        )
    """,
    "comments": """
        CREATE TABLE IF NOT EXISTS comments (
            id           TEXT PRIMARY KEY,
            component_id TEXT NOT NULL REFERENCES components(id) ON DELETE CASCADE,
            content      TEXT NOT NULL,
            author_id    TEXT NOT NULL REFERENCES users(id),
            created_at   TEXT NOT NULL,
            updated_at   TEXT NOT NULL
        )
    """,
    "connections": """
        CREATE TABLE IF NOT EXISTS connections (
            id                TEXT PRIMARY KEY,
            from_component_id TEXT NOT NULL REFERENCES components(id) ON DELETE CASCADE,
            to_component_id   TEXT NOT NULL REFERENCES components(id) ON DELETE CASCADE,
            label             TEXT,
            created_at        TEXT NOT NULL
        )
    """,
    "activity_logs": """
        CREATE TABLE IF NOT EXISTS activity_logs (
            id          TEXT PRIMARY KEY,
            user_id     TEXT NOT NULL REFERENCES users(id),
            action      TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            entity_id   TEXT NOT NULL,
            changes     TEXT NOT NULL DEFAULT '{}',
            created_at  TEXT NOT NULL
        )
    """,
    "snapshots": """
        CREATE TABLE IF NOT EXISTS snapshots (
            id            TEXT PRIMARY KEY,
            name          TEXT NOT NULL,
            data          TEXT NOT NULL,
            created_by_id TEXT NOT NULL REFERENCES users(id),
            created_at    TEXT NOT NULL
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_components_section ON components(section_id)",
    "CREATE INDEX IF NOT EXISTS idx_metrics_component ON metrics(component_id)",
    "CREATE INDEX IF NOT EXISTS idx_todos_component ON todos(component_id)",
    "CREATE INDEX IF NOT EXISTS idx_issues_component ON issues(component_id)",
    "CREATE INDEX IF NOT EXISTS idx_ideas_component ON ideas(component_id)",
    "CREATE INDEX IF NOT EXISTS idx_comments_component ON comments(component_id)",
    "CREATE INDEX IF NOT EXISTS idx_activity_entity ON activity_logs(entity_type, entity_id)",
    "CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_logs(created_at)",
]

# Ordered list for creation, respecting foreign key dependencies
TABLE_CREATION_ORDER = [
    "users",
    "sections",
    "components",
    "metrics",
    "todos",
    "issues",
    "ideas",
    "comments",
    "connections",
    "activity_logs",
    "snapshots",
]
