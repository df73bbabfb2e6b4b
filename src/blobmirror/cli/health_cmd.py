"""CLI command for checking the cache database and the remote store.

Usage:
    blobmirror health
    blobmirror health --database-url sqlite+aiosqlite:///./cache.db
"""

from __future__ import annotations

import asyncio
from typing import Any

import orjson
import typer

from blobmirror.config import settings
from blobmirror.persistence.db import create_cache_engine, health_check
from blobmirror.remote import factory
from blobmirror.remote.models import RemoteHealth

app = typer.Typer(help="Check the cache database and the remote store")


@app.callback(invoke_without_command=True)
def health(
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        "-d",
        help="Cache database URL (defaults to CACHE_DATABASE_URL)",
    ),
) -> None:
    """Print the health of both stores as JSON; exit 1 if either is unhealthy."""
    report = asyncio.run(_health(database_url or settings.cache_database_url))
    typer.echo(orjson.dumps(report, option=orjson.OPT_INDENT_2).decode("utf-8"))
    if not (report["cache"]["healthy"] and report["remote"]["healthy"]):
        raise typer.Exit(code=1)


async def _health(database_url: str) -> dict[str, Any]:
    engine = create_cache_engine(database_url)
    try:
        cache_healthy = await health_check(engine)
    finally:
        await engine.dispose()
    remote = await _remote_health()
    return {"cache": {"healthy": cache_healthy}, "remote": remote.to_dict()}


async def _remote_health() -> RemoteHealth:
    try:
        remote = factory.get_remote_store()
    except ValueError as exc:
        return RemoteHealth(is_healthy=False, error=str(exc))
    try:
        return await remote.health_check()
    finally:
        await factory.close_remote_store()
