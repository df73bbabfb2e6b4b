"""Full-scan reconciliation of the cache against the remote store.

One pass makes the cache an exact mirror of the remote population:
- upsert every remote container
- upsert every remote blob, in batches, per container
- delete cached blobs not observed for a container, then recompute its
  blob count and total size
- delete cached containers not observed (their blobs cascade)
- delete upload sessions that have been idle past the upload timeout

Nothing about a pass is persisted besides the mirrored rows themselves, so
two passes without remote changes leave the cache identical.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from blobmirror.config import settings
from blobmirror.errors import ErrorKind, StorageError
from blobmirror.observability.logging import LogContext
from blobmirror.persistence.cache import CacheStore
from blobmirror.remote.base import RemoteStore
from blobmirror.remote.models import RemoteBlob

logger = logging.getLogger(__name__)


def _chunks(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


@dataclass
class SyncResult:
    """Outcome of one reconciliation pass.

    status is one of completed, partial (some containers failed),
    failed (the container listing failed) or skipped (a pass was running).
    """

    sync_id: str
    status: str = "completed"
    containers: int = 0
    blobs: int = 0
    removed_containers: int = 0
    removed_blobs: int = 0
    removed_uploads: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: float = 0
    reason: str | None = None

    @property
    def success(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "syncId": self.sync_id,
            "status": self.status,
            "containers": self.containers,
            "blobs": self.blobs,
            "removedContainers": self.removed_containers,
            "removedBlobs": self.removed_blobs,
            "removedUploads": self.removed_uploads,
            "errors": list(self.errors),
            "durationMs": self.duration_ms,
            "reason": self.reason,
        }


class CacheSynchronizer:
    """Runs reconciliation passes; at most one at a time per instance."""

    def __init__(
        self,
        remote: RemoteStore,
        cache: CacheStore,
        batch_size: int | None = None,
        upload_timeout: timedelta | None = None,
    ):
        self.remote = remote
        self.cache = cache
        self.batch_size = batch_size or settings.sync_batch_size
        self.upload_timeout = upload_timeout or timedelta(minutes=settings.upload_timeout_minutes)
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def synchronize(self) -> SyncResult:
        """Run one reconciliation pass.

        Returns a skipped result instead of waiting when a pass is already
        running. Cancelling the calling task aborts the pass; the next pass
        repairs whatever was left half done.
        """
        sync_id = uuid4().hex[:12]
        if self._lock.locked():
            logger.info("Cache synchronization already running; skipping %s", sync_id)
            return SyncResult(sync_id=sync_id, status="skipped", reason="already running")

        async with self._lock:
            with LogContext(sync_id=sync_id):
                return await self._run(sync_id)

    async def _run(self, sync_id: str) -> SyncResult:
        start_time = datetime.now(UTC)
        result = SyncResult(sync_id=sync_id)
        logger.info("Starting cache synchronization")

        observed: list[str] = []
        try:
            async for container in self.remote.list_containers():
                await self.cache.upsert_container(container)
                observed.append(container.name)
        except StorageError as exc:
            logger.error("Listing remote containers failed: %s", exc.text)
            result.status = "failed"
            result.reason = "container listing failed"
            result.errors.append(exc.text)
            return self._finish(result, start_time)
        result.containers = len(observed)

        for container_name in observed:
            await self._sync_container(container_name, result)

        stale_containers = sorted(await self.cache.list_container_names() - set(observed))
        for chunk in _chunks(stale_containers, self.batch_size):
            result.removed_containers += await self.cache.remove_containers(chunk)

        cutoff = datetime.now(UTC) - self.upload_timeout
        result.removed_uploads = await self.cache.remove_stale_uploads(cutoff)

        if result.errors:
            result.status = "partial"
        return self._finish(result, start_time)

    async def _sync_container(self, container_name: str, result: SyncResult) -> None:
        observed: set[str] = set()
        batch: list[RemoteBlob] = []
        try:
            async for blob in self.remote.list_blobs(container_name):
                observed.add(blob.name)
                batch.append(blob)
                if len(batch) >= self.batch_size:
                    await self.cache.upsert_blobs(container_name, batch)
                    batch = []
            if batch:
                await self.cache.upsert_blobs(container_name, batch)
        except StorageError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                logger.info("Container %s disappeared during synchronization", container_name)
                if await self.cache.remove_container(container_name):
                    result.removed_containers += 1
                return
            logger.error("Synchronizing container %s failed: %s", container_name, exc.text)
            result.errors.append(f"{container_name}: {exc.text}")
            return

        stale_blobs = sorted(await self.cache.list_blob_names(container_name) - observed)
        for chunk in _chunks(stale_blobs, self.batch_size):
            result.removed_blobs += await self.cache.remove_blobs(container_name, chunk)
        await self.cache.refresh_container_aggregates(container_name)
        result.blobs += len(observed)
        logger.debug(
            "Synchronized container %s: %d blobs, %d removed",
            container_name,
            len(observed),
            len(stale_blobs),
        )

    @staticmethod
    def _finish(result: SyncResult, start_time: datetime) -> SyncResult:
        result.duration_ms = (datetime.now(UTC) - start_time).total_seconds() * 1000
        logger.info(
            "Cache synchronization %s: %d containers, %d blobs, removed %d containers, "
            "%d blobs, %d uploads in %.1fms",
            result.status,
            result.containers,
            result.blobs,
            result.removed_containers,
            result.removed_blobs,
            result.removed_uploads,
            result.duration_ms,
        )
        return result
