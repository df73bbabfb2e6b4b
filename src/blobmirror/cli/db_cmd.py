"""CLI command for creating the cache schema.

Usage:
    blobmirror init-db
    blobmirror init-db --database-url sqlite+aiosqlite:///./cache.db
"""

from __future__ import annotations

import asyncio

import typer

from blobmirror.config import settings
from blobmirror.persistence.db import create_cache_engine, init_db

app = typer.Typer(help="Create or rebuild the cache schema")


@app.callback(invoke_without_command=True)
def init_database(
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        "-d",
        help="Cache database URL (defaults to CACHE_DATABASE_URL)",
    ),
) -> None:
    """Create the cache tables, rebuilding them if the schema version changed."""
    created = asyncio.run(_init_database(database_url or settings.cache_database_url))
    if created:
        typer.echo("Cache schema created")
    else:
        typer.echo("Cache schema is up to date")


async def _init_database(database_url: str) -> bool:
    engine = create_cache_engine(database_url)
    try:
        return await init_db(engine)
    finally:
        await engine.dispose()
