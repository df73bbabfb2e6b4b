"""Transfer models returned by and passed to a remote store."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

EPOCH = datetime.min.replace(tzinfo=UTC)


class PublicAccess(str, Enum):
    """Public access level of a container."""

    NONE = "none"
    BLOB = "blob"
    CONTAINER = "container"


class BlobType(str, Enum):
    """Kind of blob."""

    BLOCK = "block"
    APPEND = "append"
    PAGE = "page"


@dataclass
class RemoteContainer:
    """A container as reported by the remote store."""

    name: str
    etag: str
    last_modified: datetime
    default_encryption_scope: str = ""
    prevent_encryption_scope_override: bool = False
    public_access: PublicAccess = PublicAccess.NONE
    has_immutability_policy: bool = False
    has_immutable_storage_with_versioning: bool = False
    has_legal_hold: bool = False
    remaining_retention_days: int | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class RemoteBlob:
    """A blob as reported by the remote store."""

    name: str
    etag: str
    last_modified: datetime
    blob_type: BlobType = BlobType.BLOCK
    content_type: str = "application/octet-stream"
    content_encoding: str = ""
    content_language: str = ""
    content_length: int = 0
    created_on: datetime | None = None
    expires_on: datetime | None = None
    last_accessed_on: datetime | None = None
    has_legal_hold: bool = False
    remaining_retention_days: int | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerProperties:
    """Settable properties of a container."""

    public_access: PublicAccess | None = None
    default_encryption_scope: str | None = None
    prevent_encryption_scope_override: bool | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class BlobProperties:
    """Settable properties of a blob."""

    content_type: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class BlockInfo:
    """Result of staging a single block."""

    block_id: str
    status_code: int
    content_md5: str | None = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code <= 299


@dataclass
class DownloadResult:
    """A (possibly partial) blob download.

    ``content`` yields the body in chunks and must be closed with
    ``aclose()`` when the caller does not consume it to the end.
    """

    status_code: int
    content: AsyncIterator[bytes] | None = None
    content_length: int | None = None
    content_range: str | None = None
    content_type: str | None = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code <= 299

    async def aclose(self) -> None:
        """Release the content stream; safe to call more than once."""
        content, self.content = self.content, None
        closer = getattr(content, "aclose", None)
        if closer is not None:
            # Closing must not mask the error that triggered it
            with contextlib.suppress(Exception):
                await closer()


@dataclass
class RemoteHealth:
    """Result of probing the remote store."""

    is_healthy: bool
    response_time_ms: float | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.is_healthy,
            "responseTimeMs": self.response_time_ms,
            "error": self.error,
        }
