"""Projections returned by the repositories and the requests they accept.

Projections are read back from cache rows. Field names serialize to
camelCase (``model_dump(by_alias=True)``) for HTTP-facing callers.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from blobmirror.persistence.tables import BlobTable, ContainerTable
from blobmirror.remote.models import BlobType, DownloadResult, PublicAccess


class ProjectionModel(BaseModel):
    """Base model for projections and requests."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class RequestModel(ProjectionModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "forbid",
    }


# -----------------------------------------------------------------------------
# Containers
# -----------------------------------------------------------------------------


class ContainerDTO(ProjectionModel):
    """A cached container."""

    name: str
    etag: str
    last_modified: datetime
    blob_count: int = 0
    total_size: int = 0
    default_encryption_scope: str = ""
    prevent_encryption_scope_override: bool = False
    public_access: PublicAccess = PublicAccess.NONE
    has_immutability_policy: bool = False
    has_immutable_storage_with_versioning: bool = False
    has_legal_hold: bool = False
    remaining_retention_days: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: ContainerTable) -> ContainerDTO:
        return cls(
            name=row.name,
            etag=row.etag,
            last_modified=row.last_modified,
            blob_count=row.blob_count,
            total_size=row.total_size,
            default_encryption_scope=row.default_encryption_scope,
            prevent_encryption_scope_override=row.prevent_encryption_scope_override,
            public_access=PublicAccess(row.public_access),
            has_immutability_policy=row.has_immutability_policy,
            has_immutable_storage_with_versioning=row.has_immutable_storage_with_versioning,
            has_legal_hold=row.has_legal_hold,
            remaining_retention_days=row.remaining_retention_days,
            metadata=dict(row.metadata_),
        )


class CreateContainerRequest(RequestModel):
    """Properties of a container to create.

    ``public_access`` accepts none, blob, container or blobcontainer.
    """

    public_access: str | None = None
    default_encryption_scope: str | None = None
    prevent_encryption_scope_override: bool | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class UpdateContainerRequest(RequestModel):
    metadata: dict[str, str] = Field(default_factory=dict)


# -----------------------------------------------------------------------------
# Blobs
# -----------------------------------------------------------------------------


class BlobDTO(ProjectionModel):
    """A cached blob.

    Two projections are equal when they describe the same state of the same
    blob, i.e. container, name and entity tag all match.
    """

    container_name: str
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
    metadata: dict[str, str] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.container_name, self.name, self.etag)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BlobDTO):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    @classmethod
    def from_row(cls, row: BlobTable) -> BlobDTO:
        return cls(
            container_name=row.container_name,
            name=row.name,
            etag=row.etag,
            last_modified=row.last_modified,
            blob_type=BlobType(row.blob_type),
            content_type=row.content_type,
            content_encoding=row.content_encoding,
            content_language=row.content_language,
            content_length=row.content_length,
            created_on=row.created_on,
            expires_on=row.expires_on,
            last_accessed_on=row.last_accessed_on,
            has_legal_hold=row.has_legal_hold,
            remaining_retention_days=row.remaining_retention_days,
            metadata=dict(row.metadata_),
            tags=dict(row.tags),
        )


class UpdateBlobRequest(RequestModel):
    metadata: dict[str, str] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)


@dataclass
class BlobDownload:
    """Cached blob headers combined with the remote content stream.

    The caller owns ``content`` and must consume it fully or call ``aclose()``.
    """

    status_code: int
    content: AsyncIterator[bytes] | None
    etag: str
    last_modified: datetime
    content_type: str
    content_encoding: str
    content_language: str
    content_length: int
    content_range: str | None = None
    result: DownloadResult | None = field(default=None, repr=False)

    async def aclose(self) -> None:
        self.content = None
        if self.result is not None:
            await self.result.aclose()

    async def read_all(self) -> bytes:
        """Read the remaining content into memory. Meant for small blobs."""
        chunks: list[bytes] = []
        try:
            if self.content is not None:
                async for chunk in self.content:
                    chunks.append(chunk)
        finally:
            await self.aclose()
        return b"".join(chunks)


# -----------------------------------------------------------------------------
# Uploads
# -----------------------------------------------------------------------------


class CreateUploadRequest(RequestModel):
    """Target and properties of a chunked upload."""

    container_name: str
    blob_name: str
    content_length: int
    content_type: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)


class UploadStatus(ProjectionModel):
    upload_id: str
    container_name: str
    blob_name: str
    content_length: int
    uploaded_length: int
    progress: float
    block_ids: list[str] = Field(default_factory=list)
    created_at: datetime
    last_activity_at: datetime


class UploadSummary(ProjectionModel):
    upload_id: str
    container_name: str
    blob_name: str
    last_activity_at: datetime
    progress: float


# -----------------------------------------------------------------------------
# Dashboard
# -----------------------------------------------------------------------------


class DashboardStats(ProjectionModel):
    container_count: int = 0
    blob_count: int = 0
    total_blob_size: int = 0
    total_image_size: int = 0


class RecentContainer(ProjectionModel):
    name: str
    last_modified: datetime
    blob_count: int
    total_size: int


class RecentBlob(ProjectionModel):
    container_name: str
    name: str
    content_type: str
    content_length: int
    last_modified: datetime


class Dashboard(ProjectionModel):
    stats: DashboardStats
    recent_containers: list[RecentContainer] = Field(default_factory=list)
    recent_blobs: list[RecentBlob] = Field(default_factory=list)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
