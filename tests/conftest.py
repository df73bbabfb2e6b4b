"""Global pytest configuration and fixtures.

Provides an in-memory remote store and an in-memory SQLite cache so the
repositories, upload engine and synchronizer can be exercised without Azure.
"""

from __future__ import annotations

import base64
import hashlib
import itertools
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime, timedelta

import pytest

from blobmirror.errors import StorageError
from blobmirror.persistence.cache import CacheStore
from blobmirror.persistence.db import create_cache_engine, create_session_factory, init_db
from blobmirror.remote.base import BlockContent, RemoteStore, parse_http_range
from blobmirror.remote.models import (
    BlobProperties,
    BlockInfo,
    ContainerProperties,
    DownloadResult,
    PublicAccess,
    RemoteBlob,
    RemoteContainer,
    RemoteHealth,
)
from blobmirror.repositories.storage import StorageRepository
from blobmirror.repositories.uploads import UploadSessionEngine
from blobmirror.sync.service import CacheSynchronizer

MEMORY_URL = "sqlite+aiosqlite:///:memory:"
BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class InMemoryRemoteStore(RemoteStore):
    """Remote store keeping containers, blobs and staged blocks in dicts.

    Failures can be injected per operation through the ``*_error`` attributes.
    """

    def __init__(self) -> None:
        self.containers: dict[str, RemoteContainer] = {}
        self.blobs: dict[str, dict[str, RemoteBlob]] = {}
        self.contents: dict[tuple[str, str], bytes] = {}
        self.staged: dict[tuple[str, str], dict[str, bytes]] = {}
        self.calls: list[str] = []
        self.open_streams = 0
        self.list_containers_error: StorageError | None = None
        self.list_blobs_errors: dict[str, StorageError] = {}
        self.stage_block_error: StorageError | None = None
        self.health_error: StorageError | None = None
        self._etags = itertools.count(1)
        self._clock = itertools.count(1)

    def _etag(self) -> str:
        return f"0x8DC{next(self._etags):013X}"

    def _now(self) -> datetime:
        return BASE_TIME + timedelta(seconds=next(self._clock))

    def _require_container(self, name: str) -> None:
        if name not in self.containers:
            raise StorageError.not_found("Container", name)

    def _require_blob(self, container_name: str, blob_name: str) -> RemoteBlob:
        self._require_container(container_name)
        blob = self.blobs[container_name].get(blob_name)
        if blob is None:
            raise StorageError.not_found("Blob", f"{container_name}/{blob_name}")
        return blob

    # Seeding helpers used by tests to change the remote behind the cache's back

    def add_container(self, name: str, **metadata: str) -> RemoteContainer:
        container = RemoteContainer(
            name=name, etag=self._etag(), last_modified=self._now(), metadata=dict(metadata)
        )
        self.containers[name] = container
        self.blobs.setdefault(name, {})
        return container

    def add_blob(
        self,
        container_name: str,
        blob_name: str,
        data: bytes = b"",
        content_type: str = "application/octet-stream",
        last_modified: datetime | None = None,
    ) -> RemoteBlob:
        if container_name not in self.containers:
            self.add_container(container_name)
        blob = RemoteBlob(
            name=blob_name,
            etag=self._etag(),
            last_modified=last_modified or self._now(),
            content_type=content_type,
            content_length=len(data),
            created_on=BASE_TIME,
        )
        self.blobs[container_name][blob_name] = blob
        self.contents[(container_name, blob_name)] = data
        return blob

    def drop_container(self, name: str) -> None:
        self.containers.pop(name, None)
        for blob_name in self.blobs.pop(name, {}):
            self.contents.pop((name, blob_name), None)

    def drop_blob(self, container_name: str, blob_name: str) -> None:
        self.blobs.get(container_name, {}).pop(blob_name, None)
        self.contents.pop((container_name, blob_name), None)

    # RemoteStore

    async def create_container(
        self, container_name: str, properties: ContainerProperties
    ) -> RemoteContainer:
        self.calls.append("create_container")
        if container_name in self.containers:
            raise StorageError.already_exists("Container", container_name)
        container = self.add_container(container_name, **properties.metadata)
        container.public_access = properties.public_access or PublicAccess.NONE
        container.default_encryption_scope = properties.default_encryption_scope or ""
        container.prevent_encryption_scope_override = bool(
            properties.prevent_encryption_scope_override
        )
        return container

    async def get_container(self, container_name: str) -> RemoteContainer:
        self.calls.append("get_container")
        self._require_container(container_name)
        return self.containers[container_name]

    async def list_containers(self) -> AsyncIterator[RemoteContainer]:
        self.calls.append("list_containers")
        if self.list_containers_error is not None:
            raise self.list_containers_error
        for name in sorted(self.containers):
            yield self.containers[name]

    async def update_container(
        self, container_name: str, properties: ContainerProperties
    ) -> RemoteContainer:
        self.calls.append("update_container")
        self._require_container(container_name)
        container = self.containers[container_name]
        container.metadata = dict(properties.metadata)
        container.etag = self._etag()
        container.last_modified = self._now()
        return container

    async def delete_container(self, container_name: str) -> bool:
        self.calls.append("delete_container")
        if container_name not in self.containers:
            return False
        self.drop_container(container_name)
        return True

    async def get_blob(self, container_name: str, blob_name: str) -> RemoteBlob:
        self.calls.append("get_blob")
        return self._require_blob(container_name, blob_name)

    async def list_blobs(self, container_name: str) -> AsyncIterator[RemoteBlob]:
        self.calls.append("list_blobs")
        error = self.list_blobs_errors.get(container_name)
        if error is not None:
            raise error
        self._require_container(container_name)
        for name in sorted(self.blobs[container_name]):
            yield self.blobs[container_name][name]

    async def update_blob(
        self, container_name: str, blob_name: str, properties: BlobProperties
    ) -> RemoteBlob:
        self.calls.append("update_blob")
        blob = self._require_blob(container_name, blob_name)
        blob.metadata = dict(properties.metadata)
        blob.tags = dict(properties.tags)
        blob.etag = self._etag()
        blob.last_modified = self._now()
        return blob

    async def delete_blob(self, container_name: str, blob_name: str) -> bool:
        self.calls.append("delete_blob")
        if blob_name not in self.blobs.get(container_name, {}):
            return False
        self.drop_blob(container_name, blob_name)
        return True

    async def download_blob(
        self, container_name: str, blob_name: str, http_range: str | None = None
    ) -> DownloadResult:
        self.calls.append("download_blob")
        byte_range = parse_http_range(http_range)
        blob = self._require_blob(container_name, blob_name)
        data = self.contents[(container_name, blob_name)]
        size = len(data)

        if byte_range is None:
            return DownloadResult(
                status_code=200,
                content=self._stream(data),
                content_length=size,
                content_type=blob.content_type,
            )

        offset, length = byte_range
        end = size - 1 if length is None else offset + length - 1
        if offset >= size or end >= size:
            return DownloadResult(status_code=416)
        return DownloadResult(
            status_code=206,
            content=self._stream(data[offset : end + 1]),
            content_length=end - offset + 1,
            content_range=f"bytes {offset}-{end}/{size}",
            content_type=blob.content_type,
        )

    async def _stream(self, data: bytes, chunk_size: int = 4) -> AsyncIterator[bytes]:
        self.open_streams += 1
        try:
            for start in range(0, len(data), chunk_size):
                yield data[start : start + chunk_size]
        finally:
            self.open_streams -= 1

    async def stage_block(
        self,
        container_name: str,
        blob_name: str,
        block_id: str,
        content: BlockContent,
        length: int,
    ) -> BlockInfo:
        self.calls.append("stage_block")
        self._require_container(container_name)
        if self.stage_block_error is not None:
            raise self.stage_block_error
        if isinstance(content, bytes):
            data = content
        else:
            data = b"".join([chunk async for chunk in content])
        self.staged.setdefault((container_name, blob_name), {})[block_id] = data
        md5 = base64.b64encode(hashlib.md5(data).digest()).decode("ascii")
        return BlockInfo(block_id=block_id, status_code=201, content_md5=md5)

    async def commit_block_list(
        self,
        container_name: str,
        blob_name: str,
        block_ids: Sequence[str],
        properties: BlobProperties,
    ) -> RemoteBlob:
        self.calls.append("commit_block_list")
        self._require_container(container_name)
        staged = self.staged.pop((container_name, blob_name), {})
        missing = [block_id for block_id in block_ids if block_id not in staged]
        if missing:
            raise StorageError.invalid_argument("The specified block list is invalid.")
        data = b"".join(staged[block_id] for block_id in block_ids)
        blob = self.add_blob(
            container_name,
            blob_name,
            data,
            content_type=properties.content_type or "application/octet-stream",
        )
        blob.content_encoding = properties.content_encoding or ""
        blob.content_language = properties.content_language or ""
        blob.metadata = dict(properties.metadata)
        blob.tags = dict(properties.tags)
        return blob

    async def health_check(self) -> RemoteHealth:
        self.calls.append("health_check")
        if self.health_error is not None:
            return RemoteHealth(is_healthy=False, error=self.health_error.text)
        return RemoteHealth(is_healthy=True, response_time_ms=0.1)


@pytest.fixture
async def engine():
    """In-memory cache database with the schema created."""
    engine = create_cache_engine(MEMORY_URL)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def cache(session_factory) -> CacheStore:
    return CacheStore(session_factory)


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def repository(remote: InMemoryRemoteStore, cache: CacheStore) -> StorageRepository:
    return StorageRepository(remote, cache)


@pytest.fixture
def uploads(repository: StorageRepository) -> UploadSessionEngine:
    return UploadSessionEngine(repository)


@pytest.fixture
def synchronizer(remote: InMemoryRemoteStore, cache: CacheStore) -> CacheSynchronizer:
    return CacheSynchronizer(remote, cache, batch_size=2)
