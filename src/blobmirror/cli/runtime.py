"""Wiring shared by CLI commands: cache engine, remote store and services."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from blobmirror.config import settings
from blobmirror.persistence.cache import CacheStore
from blobmirror.persistence.db import create_cache_engine, create_session_factory, init_db
from blobmirror.remote import factory
from blobmirror.remote.base import RemoteStore
from blobmirror.sync.service import CacheSynchronizer


@dataclass
class Services:
    cache: CacheStore
    remote: RemoteStore | None = None

    def synchronizer(self, batch_size: int | None = None) -> CacheSynchronizer:
        if self.remote is None:
            raise RuntimeError("Remote store is not configured for this command")
        return CacheSynchronizer(self.remote, self.cache, batch_size=batch_size)


@asynccontextmanager
async def open_services(
    database_url: str | None = None, with_remote: bool = True
) -> AsyncIterator[Services]:
    """Open the cache (creating its schema if needed) and, optionally, the remote store."""
    engine = create_cache_engine(database_url or settings.cache_database_url)
    try:
        await init_db(engine)
        remote = factory.get_remote_store() if with_remote else None
        yield Services(cache=CacheStore(create_session_factory(engine)), remote=remote)
    finally:
        if with_remote:
            await factory.close_remote_store()
        await engine.dispose()
