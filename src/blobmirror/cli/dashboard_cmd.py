"""CLI command for showing the cache dashboard.

Usage:
    blobmirror dashboard
    blobmirror dashboard --json
"""

from __future__ import annotations

import asyncio

import orjson
import typer

from blobmirror.cli.runtime import open_services
from blobmirror.repositories.models import Dashboard
from blobmirror.repositories.storage import build_dashboard

app = typer.Typer(help="Show cache totals and recently modified items")


@app.callback(invoke_without_command=True)
def dashboard(
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        "-d",
        help="Cache database URL (defaults to CACHE_DATABASE_URL)",
    ),
    limit: int | None = typer.Option(
        None,
        "--limit",
        "-n",
        min=1,
        help="Number of recent containers and blobs to show",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of tables"),
) -> None:
    """Summarize the cache. Reads the cache only; the remote store is not contacted."""
    result = asyncio.run(_dashboard(database_url, limit))
    if as_json:
        typer.echo(
            orjson.dumps(result.to_json_dict(), option=orjson.OPT_INDENT_2).decode("utf-8")
        )
        return
    _print_dashboard(result)


async def _dashboard(database_url: str | None, limit: int | None) -> Dashboard:
    async with open_services(database_url, with_remote=False) as services:
        return await build_dashboard(services.cache, limit)


def _print_dashboard(result: Dashboard) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    stats = result.stats
    console.print(
        f"[bold]Summary:[/bold] {stats.container_count} containers, "
        f"{stats.blob_count} blobs, {stats.total_blob_size} bytes "
        f"({stats.total_image_size} bytes of images)"
    )

    table = Table(title="Recent Containers")
    table.add_column("Name", style="cyan")
    table.add_column("Last Modified", style="green")
    table.add_column("Blobs", style="yellow")
    table.add_column("Size", style="magenta")
    for container in result.recent_containers:
        table.add_row(
            container.name,
            container.last_modified.isoformat(),
            str(container.blob_count),
            str(container.total_size),
        )
    console.print(table)

    table = Table(title="Recent Blobs")
    table.add_column("Container", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Content Type", style="yellow")
    table.add_column("Size", style="magenta")
    table.add_column("Last Modified")
    for blob in result.recent_blobs:
        table.add_row(
            blob.container_name,
            blob.name,
            blob.content_type,
            str(blob.content_length),
            blob.last_modified.isoformat(),
        )
    console.print(table)
