"""SQLAlchemy ORM models for the local cache.

The cache mirrors the remote store's containers and blobs for fast listing
and aggregation, and holds the bookkeeping of in-progress chunked uploads:
- containers: one row per remote container, with derived blob aggregates
- blobs: one row per remote blob, foreign key to containers
- uploads / upload_blocks: upload sessions and their staged blocks
- schema_version: the schema version the cache was created with
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from blobmirror.persistence.types import IsoTimestamp, JsonStringMap
from blobmirror.remote.models import EPOCH

# Bump when the table layout changes; a mismatching cache is rebuilt.
CURRENT_SCHEMA_VERSION = 2


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ContainerTable(Base):
    """Cached container.

    blob_count and total_size are aggregates over the container's blobs.
    """

    __tablename__ = "containers"

    name: Mapped[str] = mapped_column(String(63), primary_key=True)
    etag: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    last_modified: Mapped[datetime] = mapped_column(
        IsoTimestamp, nullable=False, default=EPOCH, index=True
    )

    default_encryption_scope: Mapped[str] = mapped_column(Text, nullable=False, default="")
    prevent_encryption_scope_override: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    public_access: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    has_immutability_policy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_immutable_storage_with_versioning: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    has_legal_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    remaining_retention_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_: Mapped[dict[str, str]] = mapped_column(
        "metadata", JsonStringMap, nullable=False, default=dict
    )

    # Aggregates over blobs
    blob_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    blobs: Mapped[list[BlobTable]] = relationship(
        back_populates="container",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class BlobTable(Base):
    """Cached blob, keyed by (container_name, name)."""

    __tablename__ = "blobs"

    container_name: Mapped[str] = mapped_column(
        String(63),
        ForeignKey("containers.name", ondelete="CASCADE"),
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(String(1024), primary_key=True)
    etag: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    last_modified: Mapped[datetime] = mapped_column(
        IsoTimestamp, nullable=False, default=EPOCH, index=True
    )

    blob_type: Mapped[str] = mapped_column(String(16), nullable=False, default="block", index=True)
    content_type: Mapped[str] = mapped_column(
        String(255), nullable=False, default="application/octet-stream", index=True
    )
    content_encoding: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    content_language: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    content_length: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, index=True)

    created_on: Mapped[datetime] = mapped_column(IsoTimestamp, nullable=False, default=EPOCH)
    expires_on: Mapped[datetime | None] = mapped_column(IsoTimestamp, nullable=True)
    last_accessed_on: Mapped[datetime | None] = mapped_column(IsoTimestamp, nullable=True)

    has_legal_hold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    remaining_retention_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_: Mapped[dict[str, str]] = mapped_column(
        "metadata", JsonStringMap, nullable=False, default=dict
    )
    tags: Mapped[dict[str, str]] = mapped_column(JsonStringMap, nullable=False, default=dict)

    container: Mapped[ContainerTable] = relationship(back_populates="blobs")

    __table_args__ = (Index("idx_blobs_container_name", "container_name"),)

    @property
    def identity(self) -> tuple[str, str, str]:
        """Blob state identity: two rows are the same state iff identities match."""
        return (self.container_name, self.name, self.etag)


class UploadTable(Base):
    """An in-progress chunked upload session."""

    __tablename__ = "uploads"

    upload_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    container_name: Mapped[str] = mapped_column(String(63), nullable=False)
    blob_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    content_length: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content_encoding: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content_language: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict[str, str]] = mapped_column(
        "metadata", JsonStringMap, nullable=False, default=dict
    )
    tags: Mapped[dict[str, str]] = mapped_column(JsonStringMap, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(IsoTimestamp, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(IsoTimestamp, nullable=False)

    blocks: Mapped[list[UploadBlockTable]] = relationship(
        back_populates="upload",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="UploadBlockTable.id",
    )

    __table_args__ = (
        Index("idx_uploads_last_activity_at", "last_activity_at"),
        Index("idx_uploads_target", "container_name", "blob_name"),
    )


class UploadBlockTable(Base):
    """A block staged for an upload session."""

    __tablename__ = "upload_blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    upload_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("uploads.upload_id", ondelete="CASCADE"),
        nullable=False,
    )
    block_id: Mapped[str] = mapped_column(String(100), nullable=False)
    block_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    content_md5: Mapped[str | None] = mapped_column(String(32), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(IsoTimestamp, nullable=False)

    upload: Mapped[UploadTable] = relationship(back_populates="blocks")

    __table_args__ = (UniqueConstraint("upload_id", "block_id", name="uq_upload_blocks_block"),)


class SchemaVersionTable(Base):
    """The schema version the cache database was created with."""

    __tablename__ = "schema_version"

    schema_version_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
