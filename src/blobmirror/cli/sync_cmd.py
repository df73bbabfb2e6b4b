"""CLI command for running one cache synchronization pass.

Usage:
    blobmirror sync
    blobmirror sync --batch-size 500
"""

from __future__ import annotations

import asyncio
from typing import Any

import orjson
import typer

from blobmirror.cli.runtime import open_services

app = typer.Typer(help="Reconcile the cache with the remote store")


@app.callback(invoke_without_command=True)
def sync(
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        "-d",
        help="Cache database URL (defaults to CACHE_DATABASE_URL)",
    ),
    batch_size: int | None = typer.Option(
        None,
        "--batch-size",
        "-b",
        min=1,
        help="Blobs upserted per transaction",
    ),
) -> None:
    """Run a synchronization pass and print its summary as JSON.

    Exits with code 1 when any part of the pass failed.
    """
    summary = asyncio.run(_sync(database_url, batch_size))
    typer.echo(orjson.dumps(summary, option=orjson.OPT_INDENT_2).decode("utf-8"))
    if summary["status"] != "completed":
        raise typer.Exit(code=1)


async def _sync(database_url: str | None, batch_size: int | None) -> dict[str, Any]:
    async with open_services(database_url) as services:
        result = await services.synchronizer(batch_size).synchronize()
    return result.to_dict()
