"""Write-through repository for containers and blobs.

Every mutation goes to the remote store first; the cache row is then
reconciled from the truth the remote returned. Point reads, listings and
the dashboard are served from the cache only.
"""

from __future__ import annotations

import logging

from blobmirror.config import settings
from blobmirror.errors import StorageError
from blobmirror.persistence.cache import CacheStore
from blobmirror.remote.base import RemoteStore
from blobmirror.remote.models import BlobProperties, ContainerProperties, RemoteBlob
from blobmirror.repositories.models import (
    BlobDownload,
    BlobDTO,
    ContainerDTO,
    CreateContainerRequest,
    Dashboard,
    DashboardStats,
    RecentBlob,
    RecentContainer,
    UpdateBlobRequest,
    UpdateContainerRequest,
)
from blobmirror.repositories.validation import (
    parse_public_access,
    validate_blob_name,
    validate_container_name,
)

logger = logging.getLogger(__name__)


class StorageRepository:
    """Container and blob operations over a remote store and its cache."""

    def __init__(self, remote: RemoteStore, cache: CacheStore):
        self.remote = remote
        self.cache = cache

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    async def create_container(
        self, name: str, request: CreateContainerRequest | None = None
    ) -> ContainerDTO:
        """Create a container remotely and cache it.

        Raises:
            StorageError: InvalidArgument for a bad name or access level,
                AlreadyExists if the container exists remotely.
        """
        validate_container_name(name)
        request = request or CreateContainerRequest()
        properties = ContainerProperties(
            public_access=parse_public_access(request.public_access),
            default_encryption_scope=request.default_encryption_scope,
            prevent_encryption_scope_override=request.prevent_encryption_scope_override,
            metadata=dict(request.metadata),
        )
        logger.debug("Creating container %s", name)
        remote = await self.remote.create_container(name, properties)
        row = await self.cache.upsert_container(remote)
        logger.info("Created container %s", name)
        return ContainerDTO.from_row(row)

    async def get_container(self, name: str) -> ContainerDTO | None:
        logger.debug("Getting container %s from cache", name)
        row = await self.cache.get_container(name)
        return ContainerDTO.from_row(row) if row is not None else None

    async def list_containers(
        self, limit: int | None = None, offset: int = 0
    ) -> list[ContainerDTO]:
        rows = await self.cache.list_containers(limit=limit, offset=offset)
        return [ContainerDTO.from_row(row) for row in rows]

    async def update_container(
        self, name: str, request: UpdateContainerRequest
    ) -> ContainerDTO:
        """Replace a container's metadata.

        Raises:
            StorageError: NotFound if the container does not exist remotely.
        """
        logger.debug("Updating container %s", name)
        remote = await self.remote.update_container(
            name, ContainerProperties(metadata=dict(request.metadata))
        )
        row = await self.cache.upsert_container(remote)
        return ContainerDTO.from_row(row)

    async def delete_container(self, name: str) -> bool:
        """Delete a container remotely and drop it, with its blobs, from the cache.

        Returns:
            False if the container was already gone remotely.
        """
        logger.debug("Deleting container %s", name)
        deleted = await self.remote.delete_container(name)
        await self.cache.remove_container(name)
        if deleted:
            logger.info("Deleted container %s", name)
        else:
            logger.debug("Container %s was already gone remotely", name)
        return deleted

    async def ensure_container_cached(self, name: str) -> None:
        """Fetch a container from the remote store if the cache lost it."""
        if not await self.cache.container_exists(name):
            logger.debug("Container %s missing from cache; fetching from remote", name)
            await self.cache.upsert_container(await self.remote.get_container(name))

    # -------------------------------------------------------------------------
    # Blobs
    # -------------------------------------------------------------------------

    async def get_blob(self, container_name: str, blob_name: str) -> BlobDTO | None:
        logger.debug("Getting blob %s/%s from cache", container_name, blob_name)
        row = await self.cache.get_blob(container_name, blob_name)
        return BlobDTO.from_row(row) if row is not None else None

    async def list_blobs(
        self, container_name: str, limit: int | None = None, offset: int = 0
    ) -> list[BlobDTO]:
        """List cached blobs of a container, ordered by name.

        Raises:
            StorageError: NotFound if the container is not cached.
        """
        if not await self.cache.container_exists(container_name):
            raise StorageError.not_found("Container", container_name)
        rows = await self.cache.list_blobs(container_name, limit=limit, offset=offset)
        return [BlobDTO.from_row(row) for row in rows]

    async def update_blob(
        self, container_name: str, blob_name: str, request: UpdateBlobRequest
    ) -> BlobDTO:
        """Replace a blob's metadata and tags.

        Raises:
            StorageError: NotFound if the blob does not exist remotely.
        """
        validate_blob_name(blob_name)
        logger.debug("Updating blob %s/%s", container_name, blob_name)
        remote = await self.remote.update_blob(
            container_name,
            blob_name,
            BlobProperties(metadata=dict(request.metadata), tags=dict(request.tags)),
        )
        return await self.apply_remote_blob(container_name, remote)

    async def apply_remote_blob(self, container_name: str, remote: RemoteBlob) -> BlobDTO:
        """Cache a blob as returned by the remote store and refresh its container."""
        await self.ensure_container_cached(container_name)
        row = await self.cache.upsert_blob(container_name, remote)
        return BlobDTO.from_row(row)

    async def delete_blob(self, container_name: str, blob_name: str) -> bool:
        """Delete a blob remotely and drop it from the cache.

        Returns:
            False if the blob was already gone remotely.
        """
        logger.debug("Deleting blob %s/%s", container_name, blob_name)
        deleted = await self.remote.delete_blob(container_name, blob_name)
        await self.cache.remove_blob(container_name, blob_name)
        if deleted:
            logger.info("Deleted blob %s/%s", container_name, blob_name)
        return deleted

    async def download_blob(
        self, container_name: str, blob_name: str, http_range: str | None = None
    ) -> BlobDownload:
        """Open a download: headers from the cache, content from the remote store.

        Raises:
            StorageError: NotFound if the blob is not cached, or the kind
                matching a non-success remote status (416 gives
                RangeNotSatisfiable).
        """
        resource = f"{container_name}/{blob_name}"
        row = await self.cache.get_blob(container_name, blob_name)
        if row is None:
            raise StorageError.not_found("Blob", resource)

        logger.debug("Downloading blob %s (range=%s)", resource, http_range)
        result = await self.remote.download_blob(container_name, blob_name, http_range)
        if not result.is_success:
            await result.aclose()
            raise StorageError.from_status(
                result.status_code,
                f"Download of blob '{resource}' failed with status {result.status_code}",
                resource,
            )

        return BlobDownload(
            status_code=result.status_code,
            content=result.content,
            etag=row.etag,
            last_modified=row.last_modified,
            content_type=row.content_type,
            content_encoding=row.content_encoding,
            content_language=row.content_language,
            content_length=(
                result.content_length if result.content_length is not None else row.content_length
            ),
            content_range=result.content_range,
            result=result,
        )

    # -------------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------------

    async def get_dashboard(self, recent_limit: int | None = None) -> Dashboard:
        return await build_dashboard(self.cache, recent_limit)


async def build_dashboard(cache: CacheStore, recent_limit: int | None = None) -> Dashboard:
    """Summarize the cache: totals plus the most recently modified items."""
    limit = recent_limit if recent_limit is not None else settings.recent_items_limit
    containers, blobs, total, images = await cache.get_totals()
    recent_containers = await cache.recent_containers(limit)
    recent_blobs = await cache.recent_blobs(limit)
    return Dashboard(
        stats=DashboardStats(
            container_count=containers,
            blob_count=blobs,
            total_blob_size=total,
            total_image_size=images,
        ),
        recent_containers=[
            RecentContainer(
                name=row.name,
                last_modified=last_activity,
                blob_count=row.blob_count,
                total_size=row.total_size,
            )
            for row, last_activity in recent_containers
        ],
        recent_blobs=[
            RecentBlob(
                container_name=row.container_name,
                name=row.name,
                content_type=row.content_type,
                content_length=row.content_length,
                last_modified=row.last_modified,
            )
            for row in recent_blobs
        ],
    )
