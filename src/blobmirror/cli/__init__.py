"""CLI commands for blobmirror.

Provides command-line interface using Typer:
- blobmirror init-db: Create or rebuild the cache schema
- blobmirror sync: Run one cache synchronization pass
- blobmirror dashboard: Show cache totals and recent items
- blobmirror health: Check the cache database and the remote store

Usage:
    blobmirror --help
    blobmirror init-db
    blobmirror sync --batch-size 500
    blobmirror dashboard --json
"""

import typer

from blobmirror.cli.dashboard_cmd import app as dashboard_app
from blobmirror.cli.db_cmd import app as db_app
from blobmirror.cli.health_cmd import app as health_app
from blobmirror.cli.sync_cmd import app as sync_app
from blobmirror.config import settings
from blobmirror.observability.logging import configure_logging

# Main CLI application
app = typer.Typer(
    name="blobmirror",
    help="blobmirror: relational cache and chunked uploads for Azure Blob Storage",
    no_args_is_help=True,
)

# Add subcommands
app.add_typer(db_app, name="init-db")
app.add_typer(sync_app, name="sync")
app.add_typer(dashboard_app, name="dashboard")
app.add_typer(health_app, name="health")


@app.callback()
def callback(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
) -> None:
    """blobmirror: relational cache and chunked uploads for Azure Blob Storage."""
    configure_logging(
        json_format=settings.log_json,
        level=log_level or settings.log_level,
    )


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
