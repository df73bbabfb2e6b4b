"""Tests for cache reconciliation."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from blobmirror.errors import ErrorKind, StorageError
from blobmirror.persistence.tables import UploadTable
from blobmirror.repositories.models import BlobDTO, ContainerDTO
from blobmirror.sync.service import CacheSynchronizer, SyncResult


async def _snapshot(cache) -> list[dict]:
    rows = []
    for container in await cache.list_containers():
        rows.append(ContainerDTO.from_row(container).model_dump())
        rows.extend(
            BlobDTO.from_row(blob).model_dump()
            for blob in await cache.list_blobs(container.name)
        )
    return rows


def _upload(upload_id: str, last_activity_at: datetime) -> UploadTable:
    return UploadTable(
        upload_id=upload_id,
        container_name="docs",
        blob_name=f"{upload_id}.bin",
        content_length=10,
        created_at=last_activity_at,
        last_activity_at=last_activity_at,
    )


class TestSyncResult:
    """Test the pass summary."""

    def test_defaults(self) -> None:
        result = SyncResult(sync_id="abc")
        assert result.success is True
        assert result.errors == []
        assert result.reason is None

    def test_to_dict(self) -> None:
        result = SyncResult(sync_id="abc", status="partial", blobs=3, errors=["docs: boom"])
        payload = result.to_dict()
        assert payload["syncId"] == "abc"
        assert payload["status"] == "partial"
        assert payload["blobs"] == 3
        assert payload["removedContainers"] == 0
        assert payload["errors"] == ["docs: boom"]
        assert result.success is False


class TestSynchronize:
    """Test reconciliation passes against the in-memory remote."""

    @pytest.mark.asyncio
    async def test_empty_remote_empties_cache(
        self, synchronizer: CacheSynchronizer, repository, remote, cache
    ) -> None:
        """A cached container with two blobs disappears when the remote is empty."""
        await repository.create_container("docs")
        await repository.apply_remote_blob("docs", remote.add_blob("docs", "a.txt", b"aaa"))
        await repository.apply_remote_blob("docs", remote.add_blob("docs", "b.txt", b"bb"))
        remote.drop_container("docs")

        result = await synchronizer.synchronize()

        assert result.status == "completed"
        assert result.removed_containers == 1
        assert await cache.list_containers() == []
        assert await cache.get_totals() == (0, 0, 0, 0)

    @pytest.mark.asyncio
    async def test_mirrors_remote(self, synchronizer: CacheSynchronizer, remote, cache) -> None:
        remote.add_container("docs", owner="ops")
        for index in range(5):
            remote.add_blob("docs", f"file-{index}.txt", b"x" * (index + 1))
        remote.add_blob("images", "logo.png", b"png!", content_type="image/png")

        result = await synchronizer.synchronize()

        assert result.status == "completed"
        assert (result.containers, result.blobs) == (2, 6)
        docs = await cache.get_container("docs")
        assert docs.metadata_ == {"owner": "ops"}
        assert (docs.blob_count, docs.total_size) == (5, 15)
        assert await cache.list_blob_names("docs") == {f"file-{i}.txt" for i in range(5)}
        logo = await cache.get_blob("images", "logo.png")
        assert logo.etag == remote.blobs["images"]["logo.png"].etag
        assert await cache.get_totals() == (2, 6, 19, 4)

    @pytest.mark.asyncio
    async def test_second_pass_changes_nothing(
        self, synchronizer: CacheSynchronizer, remote, cache
    ) -> None:
        remote.add_blob("docs", "a.txt", b"abc")
        remote.add_blob("docs", "b.txt", b"de")
        remote.add_container("empty")

        await synchronizer.synchronize()
        first = await _snapshot(cache)
        result = await synchronizer.synchronize()

        assert await _snapshot(cache) == first
        assert (result.removed_containers, result.removed_blobs) == (0, 0)

    @pytest.mark.asyncio
    async def test_changed_and_removed_blobs(
        self, synchronizer: CacheSynchronizer, remote, cache
    ) -> None:
        remote.add_blob("docs", "keep.txt", b"abc")
        remote.add_blob("docs", "gone.txt", b"de")
        await synchronizer.synchronize()

        remote.drop_blob("docs", "gone.txt")
        changed = remote.add_blob("docs", "keep.txt", b"abcdef")
        result = await synchronizer.synchronize()

        assert result.removed_blobs == 1
        assert await cache.list_blob_names("docs") == {"keep.txt"}
        row = await cache.get_blob("docs", "keep.txt")
        assert (row.etag, row.content_length) == (changed.etag, 6)
        docs = await cache.get_container("docs")
        assert (docs.blob_count, docs.total_size) == (1, 6)

    @pytest.mark.asyncio
    async def test_container_vanishing_mid_pass(
        self, synchronizer: CacheSynchronizer, remote, cache
    ) -> None:
        remote.add_blob("docs", "a.txt", b"abc")
        remote.add_blob("logs", "b.txt", b"de")
        await synchronizer.synchronize()
        remote.list_blobs_errors["logs"] = StorageError.not_found("Container", "logs")

        result = await synchronizer.synchronize()

        assert result.status == "completed"
        assert result.removed_containers == 1
        assert await cache.list_container_names() == {"docs"}

    @pytest.mark.asyncio
    async def test_container_failure_is_partial(
        self, synchronizer: CacheSynchronizer, remote, cache
    ) -> None:
        remote.add_blob("docs", "a.txt", b"abc")
        remote.add_blob("logs", "b.txt", b"de")
        await synchronizer.synchronize()
        remote.drop_blob("logs", "b.txt")
        remote.list_blobs_errors["logs"] = StorageError.from_status(503, "server busy")

        result = await synchronizer.synchronize()

        assert result.status == "partial"
        assert result.success is False
        assert result.errors == ["logs: server busy"]
        assert await cache.list_blob_names("logs") == {"b.txt"}
        assert await cache.list_blob_names("docs") == {"a.txt"}

    @pytest.mark.asyncio
    async def test_listing_failure_deletes_nothing(
        self, synchronizer: CacheSynchronizer, repository, remote, cache
    ) -> None:
        await repository.create_container("docs")
        remote.list_containers_error = StorageError.from_status(500, "listing failed")

        result = await synchronizer.synchronize()

        assert result.status == "failed"
        assert result.reason == "container listing failed"
        assert result.errors == ["listing failed"]
        assert await cache.list_container_names() == {"docs"}

    @pytest.mark.asyncio
    async def test_removes_stale_uploads(
        self, synchronizer: CacheSynchronizer, remote, cache
    ) -> None:
        remote.add_container("docs")
        now = datetime.now(UTC)
        await cache.add_upload(_upload("stale", now - timedelta(hours=1)))
        await cache.add_upload(_upload("fresh", now))

        result = await synchronizer.synchronize()

        assert result.removed_uploads == 1
        assert await cache.get_upload("stale") is None
        assert await cache.get_upload("fresh") is not None

    @pytest.mark.asyncio
    async def test_concurrent_pass_is_skipped(
        self, synchronizer: CacheSynchronizer, remote, cache
    ) -> None:
        remote.add_container("docs")
        async with synchronizer._lock:
            assert synchronizer.running is True
            result = await synchronizer.synchronize()

        assert result.status == "skipped"
        assert result.reason == "already running"
        assert await cache.list_container_names() == set()
        assert synchronizer.running is False
