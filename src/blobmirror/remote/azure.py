"""Azure Blob Storage remote store using the azure-storage-blob aio client."""

from __future__ import annotations

import base64
import logging
import time
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
)
from azure.storage.blob import ContainerEncryptionScope, ContentSettings
from azure.storage.blob.aio import BlobServiceClient

from blobmirror.errors import ErrorKind, StorageError
from blobmirror.remote.base import BlockContent, RemoteStore, parse_http_range
from blobmirror.remote.models import (
    EPOCH,
    BlobProperties,
    BlobType,
    BlockInfo,
    ContainerProperties,
    DownloadResult,
    PublicAccess,
    RemoteBlob,
    RemoteContainer,
    RemoteHealth,
)

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(resource_type: str, resource: str) -> Iterator[None]:
    """Translate Azure SDK failures into StorageError."""
    try:
        yield
    except ResourceExistsError as exc:
        raise StorageError.already_exists(resource_type, resource) from exc
    except ResourceNotFoundError as exc:
        raise StorageError.not_found(resource_type, resource) from exc
    except HttpResponseError as exc:
        raise StorageError.from_status(
            exc.status_code, f"{resource_type} '{resource}': {exc.message}", resource
        ) from exc
    except AzureError as exc:
        raise StorageError.from_status(
            None, f"{resource_type} '{resource}': {exc.message}", resource
        ) from exc


def dequote(value: str | None) -> str:
    """Strip the surrounding quotes Azure puts on entity tags."""
    if not value:
        return ""
    if value.startswith('"') and value.endswith('"'):
        return value.strip('"')
    return value


def to_public_access(value: Any) -> PublicAccess:
    if value is None:
        return PublicAccess.NONE
    text = str(getattr(value, "value", value)).lower()
    if text == "container":
        return PublicAccess.CONTAINER
    if text == "blob":
        return PublicAccess.BLOB
    return PublicAccess.NONE


def from_public_access(value: PublicAccess | None) -> str | None:
    if value is None or value is PublicAccess.NONE:
        return None
    return value.value


def to_blob_type(value: Any) -> BlobType:
    text = str(getattr(value, "value", value) or "").lower()
    if "append" in text:
        return BlobType.APPEND
    if "page" in text:
        return BlobType.PAGE
    return BlobType.BLOCK


def range_total(content_range: str | None) -> int | None:
    """Total blob size from a ``bytes start-end/total`` content range."""
    if not content_range or "/" not in content_range:
        return None
    total = content_range.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


def container_from_azure(properties: Any, name: str | None = None) -> RemoteContainer:
    """Convert azure ContainerProperties to a RemoteContainer."""
    scope = getattr(properties, "encryption_scope", None)
    return RemoteContainer(
        name=name or properties.name,
        etag=dequote(properties.etag),
        last_modified=properties.last_modified or EPOCH,
        default_encryption_scope=(scope.default_encryption_scope if scope else None) or "",
        prevent_encryption_scope_override=bool(
            scope.prevent_encryption_scope_override if scope else False
        ),
        public_access=to_public_access(properties.public_access),
        has_immutability_policy=bool(properties.has_immutability_policy),
        has_immutable_storage_with_versioning=bool(
            getattr(properties, "immutable_storage_with_versioning_enabled", False)
        ),
        has_legal_hold=bool(properties.has_legal_hold),
        remaining_retention_days=getattr(properties, "remaining_retention_days", None),
        metadata=dict(properties.metadata or {}),
    )


def blob_from_azure(
    properties: Any, name: str | None = None, tags: dict[str, str] | None = None
) -> RemoteBlob:
    """Convert azure BlobProperties to a RemoteBlob."""
    content = properties.content_settings
    return RemoteBlob(
        name=name or properties.name,
        etag=dequote(properties.etag),
        last_modified=properties.last_modified or EPOCH,
        blob_type=to_blob_type(properties.blob_type),
        content_type=(content.content_type if content else None) or "application/octet-stream",
        content_encoding=(content.content_encoding if content else None) or "",
        content_language=(content.content_language if content else None) or "",
        content_length=properties.size or 0,
        created_on=properties.creation_time,
        expires_on=getattr(properties, "expires_on", None),
        last_accessed_on=getattr(properties, "last_accessed_on", None),
        has_legal_hold=bool(getattr(properties, "has_legal_hold", False)),
        remaining_retention_days=getattr(properties, "remaining_retention_days", None),
        metadata=dict(properties.metadata or {}),
        tags=dict(tags if tags is not None else (getattr(properties, "tags", None) or {})),
    )


class AzureRemoteStore(RemoteStore):
    """Remote store backed by Azure Blob Storage (or Azurite)."""

    def __init__(
        self,
        connection_string: str | None = None,
        account_url: str | None = None,
        credential: str | None = None,
    ) -> None:
        self.connection_string = connection_string
        self.account_url = account_url
        self.credential = credential
        self._client: Any | None = None

    async def _get_client(self) -> Any:
        """Get or create BlobServiceClient."""
        if self._client is None:
            if self.connection_string:
                self._client = BlobServiceClient.from_connection_string(self.connection_string)
            elif self.account_url:
                self._client = BlobServiceClient(
                    account_url=self.account_url, credential=self.credential
                )
            else:
                raise ValueError(
                    "Azure storage requires AZURE_STORAGE_CONNECTION_STRING or AZURE_ACCOUNT_URL"
                )
        return self._client

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    async def create_container(
        self, container_name: str, properties: ContainerProperties
    ) -> RemoteContainer:
        client = await self._get_client()
        scope = None
        if properties.default_encryption_scope:
            scope = ContainerEncryptionScope(
                default_encryption_scope=properties.default_encryption_scope,
                prevent_encryption_scope_override=bool(
                    properties.prevent_encryption_scope_override
                ),
            )

        with translate_errors("Container", container_name):
            container_client = await client.create_container(
                container_name,
                metadata=properties.metadata or None,
                public_access=from_public_access(properties.public_access),
                container_encryption_scope=scope,
            )
            azure_properties = await container_client.get_container_properties()
        return container_from_azure(azure_properties, container_name)

    async def get_container(self, container_name: str) -> RemoteContainer:
        client = await self._get_client()
        container_client = client.get_container_client(container_name)
        with translate_errors("Container", container_name):
            azure_properties = await container_client.get_container_properties()
        return container_from_azure(azure_properties, container_name)

    async def list_containers(self) -> AsyncIterator[RemoteContainer]:
        client = await self._get_client()
        with translate_errors("Container", "*"):
            async for azure_properties in client.list_containers(include_metadata=True):
                yield container_from_azure(azure_properties)

    async def update_container(
        self, container_name: str, properties: ContainerProperties
    ) -> RemoteContainer:
        client = await self._get_client()
        container_client = client.get_container_client(container_name)
        with translate_errors("Container", container_name):
            await container_client.set_container_metadata(metadata=properties.metadata)
            azure_properties = await container_client.get_container_properties()
        return container_from_azure(azure_properties, container_name)

    async def delete_container(self, container_name: str) -> bool:
        client = await self._get_client()
        container_client = client.get_container_client(container_name)
        try:
            with translate_errors("Container", container_name):
                await container_client.delete_container()
        except StorageError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return False
            raise
        return True

    # -------------------------------------------------------------------------
    # Blobs
    # -------------------------------------------------------------------------

    async def _fetch_blob(
        self, blob_client: Any, container_name: str, blob_name: str
    ) -> RemoteBlob:
        with translate_errors("Blob", f"{container_name}/{blob_name}"):
            azure_properties = await blob_client.get_blob_properties()
            tags = await blob_client.get_blob_tags()
        return blob_from_azure(azure_properties, blob_name, tags)

    async def get_blob(self, container_name: str, blob_name: str) -> RemoteBlob:
        client = await self._get_client()
        blob_client = client.get_blob_client(container=container_name, blob=blob_name)
        return await self._fetch_blob(blob_client, container_name, blob_name)

    async def list_blobs(self, container_name: str) -> AsyncIterator[RemoteBlob]:
        client = await self._get_client()
        container_client = client.get_container_client(container_name)
        with translate_errors("Container", container_name):
            async for azure_properties in container_client.list_blobs(
                include=["metadata", "tags"]
            ):
                yield blob_from_azure(azure_properties)

    async def update_blob(
        self, container_name: str, blob_name: str, properties: BlobProperties
    ) -> RemoteBlob:
        client = await self._get_client()
        blob_client = client.get_blob_client(container=container_name, blob=blob_name)
        with translate_errors("Blob", f"{container_name}/{blob_name}"):
            await blob_client.set_blob_metadata(metadata=properties.metadata)
            await blob_client.set_blob_tags(properties.tags)
        return await self._fetch_blob(blob_client, container_name, blob_name)

    async def delete_blob(self, container_name: str, blob_name: str) -> bool:
        client = await self._get_client()
        blob_client = client.get_blob_client(container=container_name, blob=blob_name)
        try:
            with translate_errors("Blob", f"{container_name}/{blob_name}"):
                await blob_client.delete_blob()
        except StorageError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return False
            raise
        return True

    async def download_blob(
        self, container_name: str, blob_name: str, http_range: str | None = None
    ) -> DownloadResult:
        byte_range = parse_http_range(http_range)
        offset, length = byte_range if byte_range is not None else (None, None)

        client = await self._get_client()
        blob_client = client.get_blob_client(container=container_name, blob=blob_name)
        resource = f"{container_name}/{blob_name}"
        try:
            with translate_errors("Blob", resource):
                downloader = await blob_client.download_blob(offset=offset, length=length)
        except StorageError as exc:
            if exc.kind is ErrorKind.RANGE_NOT_SATISFIABLE:
                logger.debug("Range %s not satisfiable for blob %s", http_range, resource)
                return DownloadResult(status_code=exc.status_code)
            raise

        azure_properties = downloader.properties
        content_range = getattr(azure_properties, "content_range", None)
        total = range_total(content_range)
        if length is not None and total is not None and offset + length > total:
            # The service truncates a range that runs past the end instead of failing it
            logger.debug("Range %s runs past the end of blob %s", http_range, resource)
            return DownloadResult(status_code=416)

        content_settings = azure_properties.content_settings
        return DownloadResult(
            status_code=206 if byte_range is not None else 200,
            content=self._iter_chunks(downloader, resource),
            content_length=downloader.size,
            content_range=content_range,
            content_type=content_settings.content_type if content_settings else None,
        )

    @staticmethod
    async def _iter_chunks(downloader: Any, resource: str) -> AsyncIterator[bytes]:
        with translate_errors("Blob", resource):
            async for chunk in downloader.chunks():
                yield chunk

    # -------------------------------------------------------------------------
    # Block staging
    # -------------------------------------------------------------------------

    async def stage_block(
        self,
        container_name: str,
        blob_name: str,
        block_id: str,
        content: BlockContent,
        length: int,
    ) -> BlockInfo:
        client = await self._get_client()
        blob_client = client.get_blob_client(container=container_name, blob=blob_name)
        with translate_errors("Blob", f"{container_name}/{blob_name}"):
            response = await blob_client.stage_block(block_id, content, length=length)

        content_md5 = response.get("content_md5") if isinstance(response, dict) else None
        return BlockInfo(
            block_id=block_id,
            status_code=201,
            content_md5=base64.b64encode(content_md5).decode("ascii") if content_md5 else None,
        )

    async def commit_block_list(
        self,
        container_name: str,
        blob_name: str,
        block_ids: Sequence[str],
        properties: BlobProperties,
    ) -> RemoteBlob:
        client = await self._get_client()
        blob_client = client.get_blob_client(container=container_name, blob=blob_name)
        content_settings = ContentSettings(
            content_type=properties.content_type,
            content_encoding=properties.content_encoding or None,
            content_language=properties.content_language or None,
        )
        with translate_errors("Blob", f"{container_name}/{blob_name}"):
            await blob_client.commit_block_list(
                list(block_ids),
                content_settings=content_settings,
                metadata=properties.metadata or None,
                tags=properties.tags or None,
            )
        return await self._fetch_blob(blob_client, container_name, blob_name)

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def health_check(self) -> RemoteHealth:
        """Time a Get Account Information request."""
        start = time.perf_counter()
        try:
            client = await self._get_client()
            with translate_errors("Account", self.account_url or "storage account"):
                await client.get_account_information()
        except StorageError as exc:
            logger.warning("Remote store health check failed: %s", exc.text)
            return RemoteHealth(is_healthy=False, error=exc.text)
        except ValueError as exc:
            logger.warning("Remote store is not configured: %s", exc)
            return RemoteHealth(is_healthy=False, error=str(exc))
        elapsed_ms = (time.perf_counter() - start) * 1000
        return RemoteHealth(is_healthy=True, response_time_ms=round(elapsed_ms, 1))

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
