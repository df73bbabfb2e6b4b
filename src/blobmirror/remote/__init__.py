"""Remote object store module for blobmirror.

The remote store is the authoritative copy of every container and blob:
- RemoteStore: abstract contract consumed by the cache engines
- AzureRemoteStore: Azure Blob Storage / Azurite implementation
- Content is streamed to and from the remote, never cached locally
"""

from blobmirror.remote.azure import AzureRemoteStore
from blobmirror.remote.base import BlockContent, RemoteStore, parse_http_range
from blobmirror.remote.factory import close_remote_store, get_remote_store
from blobmirror.remote.models import (
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

__all__ = [
    "RemoteStore",
    "AzureRemoteStore",
    "BlockContent",
    "parse_http_range",
    "get_remote_store",
    "close_remote_store",
    "BlobProperties",
    "BlobType",
    "BlockInfo",
    "ContainerProperties",
    "DownloadResult",
    "PublicAccess",
    "RemoteBlob",
    "RemoteContainer",
    "RemoteHealth",
]
