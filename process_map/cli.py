"""CLI entry point for process-map.

Commands:
    process-map init     : scaffold process-map.config.json in current directory
    process-map migrate  : create or upgrade the database schema
    process-map add-user : create a user (ADMIN, MANAGER or VIEWER)
    process-map seed     : load demo data into an empty database
    process-map serve    : start the API server
    process-map mcp      : start the MCP server (stdio transport)
"""

import json
import logging
import sys
from pathlib import Path

import click

from process_map.config import CONFIG_FILENAME, ConfigError, load_config, resolve_db_path

DEFAULT_CONFIG = {
    "db_path": "~/.process-map/process-map.db",
    "host": "127.0.0.1",
    "port": 8000,
    "log_level": "INFO",
    "activity_page_size": 50,
}


def _load_or_exit(config_path: str | None) -> dict:
    try:
        return load_config(config_path)
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        sys.exit(1)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@click.group()
def main() -> None:
    """process-map: track the health of a business process, component by component."""


@main.command()
def init() -> None:
    """Create a starter process-map.config.json."""
    config_path = Path.cwd() / CONFIG_FILENAME

    if config_path.exists():
        click.echo(f"Config already exists: {config_path}")
        return

    config_path.write_text(json.dumps(DEFAULT_CONFIG, indent=2) + "\n")
    click.echo(f"Created {config_path}")
    click.echo("Next: process-map migrate && process-map add-user --role ADMIN ...")


@main.command()
@click.option("--config", "config_path", default=None, help="Path to config file")
def migrate(config_path: str | None) -> None:
    """Create all tables and indexes. Safe to run repeatedly."""
    from db.migrations import init_db

    config = _load_or_exit(config_path)
    _configure_logging(config["log_level"])
    conn = init_db(config["db_path"])
    conn.close()
    click.echo(f"Database ready: {config['db_path']}")


@main.command("add-user")
@click.option("--name", required=True, help="Display name")
@click.option("--email", required=True, help="Unique email address")
@click.option(
    "--role",
    type=click.Choice(["ADMIN", "MANAGER", "VIEWER"]),
    default="VIEWER",
    show_default=True,
)
@click.option("--config", "config_path", default=None, help="Path to config file")
def add_user(name: str, email: str, role: str, config_path: str | None) -> None:
    """Create a user and print its id (used as the X-User-Id header)."""
    from db.migrations import init_db
    from process_map.mcp.tools import create_user

    config = _load_or_exit(config_path)
    conn = init_db(config["db_path"])
    try:
        result = create_user(conn, name, email, role)
    finally:
        conn.close()

    if "error" in result:
        click.echo(f"Error: {result['message']}", err=True)
        sys.exit(1)
    click.echo(f"Created {role} user {name}: {result['id']}")


@main.command()
@click.option("--config", "config_path", default=None, help="Path to config file")
def seed(config_path: str | None) -> None:
    """Load demo sections, components and activity into an empty database."""
    from db.migrations import init_db
    from process_map.seed import seed_demo

    config = _load_or_exit(config_path)
    _configure_logging(config["log_level"])
    conn = init_db(config["db_path"])
    try:
        counts = seed_demo(conn)
    except RuntimeError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        conn.close()

    for name, count in counts.items():
        click.echo(f"  {name}: {count}")


@main.command()
@click.option("--config", "config_path", default=None, help="Path to config file")
@click.option("--host", default=None, help="Override the configured host")
@click.option("--port", default=None, type=int, help="Override the configured port")
def serve(config_path: str | None, host: str | None, port: int | None) -> None:
    """Start the process-map API server."""
    import uvicorn

    from api.app import create_app
    from db.migrations import init_db

    config = _load_or_exit(config_path)
    _configure_logging(config["log_level"])

    init_db(config["db_path"]).close()
    app = create_app(config["db_path"], config)
    uvicorn.run(
        app,
        host=host or config["host"],
        port=port or config["port"],
        log_level=config["log_level"].lower(),
    )


@main.command()
@click.option("--user-id", default=None, help="Act as this user for every write")
@click.option("--config", "config_path", default=None, help="Path to config file")
def mcp(user_id: str | None, config_path: str | None) -> None:
    """Start the process-map MCP server (stdio transport)."""
    from process_map.mcp.server import run_server

    # stdout carries the protocol; logs go to stderr
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)
    run_server(user_id=user_id, db_path=resolve_db_path(config_path))
