"""Base remote store interface.

Defines the abstract interface for the authoritative object store that the
cache mirrors. Implementations translate their native failures into
StorageError exactly once, here at the boundary.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator, Sequence

from blobmirror.errors import StorageError
from blobmirror.remote.models import (
    BlobProperties,
    BlockInfo,
    ContainerProperties,
    DownloadResult,
    RemoteBlob,
    RemoteHealth,
    RemoteContainer,
)

BlockContent = bytes | AsyncIterable[bytes]

_RANGE_PATTERN = re.compile(r"^\s*bytes\s*=\s*(\d+)\s*-\s*(\d*)\s*$")


def parse_http_range(http_range: str | None) -> tuple[int, int | None] | None:
    """Parse a single ``bytes=start-[end]`` range header.

    Returns:
        (offset, length) where length is None for an open-ended range,
        or None when no range was requested.

    Raises:
        StorageError: InvalidArgument for malformed or inverted ranges.
    """
    if http_range is None or not http_range.strip():
        return None

    match = _RANGE_PATTERN.match(http_range)
    if match is None:
        raise StorageError.invalid_argument(f"Invalid HTTP range: '{http_range}'")

    start = int(match.group(1))
    if not match.group(2):
        return (start, None)

    end = int(match.group(2))
    if end < start:
        raise StorageError.invalid_argument(f"Invalid HTTP range: '{http_range}'")
    return (start, end - start + 1)


class RemoteStore(ABC):
    """Abstract base class for remote object stores."""

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_container(
        self, container_name: str, properties: ContainerProperties
    ) -> RemoteContainer:
        """Create a container.

        Raises:
            StorageError: AlreadyExists if the name is taken.
        """
        ...

    @abstractmethod
    async def get_container(self, container_name: str) -> RemoteContainer:
        """Get a container.

        Raises:
            StorageError: NotFound if the container does not exist.
        """
        ...

    @abstractmethod
    def list_containers(self) -> AsyncIterator[RemoteContainer]:
        """Enumerate all containers."""
        ...

    @abstractmethod
    async def update_container(
        self, container_name: str, properties: ContainerProperties
    ) -> RemoteContainer:
        """Replace the metadata of a container.

        Raises:
            StorageError: NotFound if the container does not exist.
        """
        ...

    @abstractmethod
    async def delete_container(self, container_name: str) -> bool:
        """Delete a container.

        Returns:
            True if deleted, False if it did not exist.
        """
        ...

    # -------------------------------------------------------------------------
    # Blobs
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_blob(self, container_name: str, blob_name: str) -> RemoteBlob:
        """Get blob properties, metadata and tags.

        Raises:
            StorageError: NotFound if the blob or container does not exist.
        """
        ...

    @abstractmethod
    def list_blobs(self, container_name: str) -> AsyncIterator[RemoteBlob]:
        """Enumerate all blobs in a container.

        Raises:
            StorageError: NotFound if the container does not exist.
        """
        ...

    @abstractmethod
    async def update_blob(
        self, container_name: str, blob_name: str, properties: BlobProperties
    ) -> RemoteBlob:
        """Replace the metadata and tags of a blob.

        Raises:
            StorageError: NotFound if the blob does not exist.
        """
        ...

    @abstractmethod
    async def delete_blob(self, container_name: str, blob_name: str) -> bool:
        """Delete a blob.

        Returns:
            True if deleted, False if it did not exist.
        """
        ...

    @abstractmethod
    async def download_blob(
        self, container_name: str, blob_name: str, http_range: str | None = None
    ) -> DownloadResult:
        """Open a streaming download of (a range of) a blob.

        Unsatisfiable ranges are reported through the result's status code
        (416), not raised.

        Raises:
            StorageError: NotFound if the blob does not exist,
                InvalidArgument if the range is malformed.
        """
        ...

    # -------------------------------------------------------------------------
    # Block staging
    # -------------------------------------------------------------------------

    @abstractmethod
    async def stage_block(
        self,
        container_name: str,
        blob_name: str,
        block_id: str,
        content: BlockContent,
        length: int,
    ) -> BlockInfo:
        """Stage an uncommitted block for a block blob.

        Args:
            container_name: Target container
            blob_name: Target blob
            block_id: Base64 block identifier
            content: Block body, streamed through without buffering
            length: Exact number of bytes in ``content``
        """
        ...

    @abstractmethod
    async def commit_block_list(
        self,
        container_name: str,
        blob_name: str,
        block_ids: Sequence[str],
        properties: BlobProperties,
    ) -> RemoteBlob:
        """Commit staged blocks, in order, as the blob's content."""
        ...

    @abstractmethod
    async def health_check(self) -> RemoteHealth:
        """Check the remote store with a cheap request.

        Failures are reported in the result, never raised.
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
