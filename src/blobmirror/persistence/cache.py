"""Row operations on the local cache.

CacheStore owns every read and write against the cache tables. Each public
method runs in its own short transaction, so single-row and single-batch
upserts are atomic without holding locks across remote calls.

Rows are returned detached from their session (``expire_on_commit=False``);
relationships that callers need are loaded eagerly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from blobmirror.errors import StorageError
from blobmirror.persistence.db import session_context
from blobmirror.persistence.tables import BlobTable, ContainerTable, UploadBlockTable, UploadTable
from blobmirror.persistence.types import IsoTimestamp
from blobmirror.remote.models import EPOCH, RemoteBlob, RemoteContainer

logger = logging.getLogger(__name__)


def _apply_container(row: ContainerTable, remote: RemoteContainer) -> None:
    row.etag = remote.etag
    row.last_modified = remote.last_modified or EPOCH
    row.default_encryption_scope = remote.default_encryption_scope or ""
    row.prevent_encryption_scope_override = remote.prevent_encryption_scope_override
    row.public_access = remote.public_access.value
    row.has_immutability_policy = remote.has_immutability_policy
    row.has_immutable_storage_with_versioning = remote.has_immutable_storage_with_versioning
    row.has_legal_hold = remote.has_legal_hold
    row.remaining_retention_days = remote.remaining_retention_days
    row.metadata_ = dict(remote.metadata)


def _apply_blob(row: BlobTable, remote: RemoteBlob) -> None:
    # Tags can change without the etag changing, so every field is assigned
    row.etag = remote.etag
    row.last_modified = remote.last_modified or EPOCH
    row.blob_type = remote.blob_type.value
    row.content_type = remote.content_type or "application/octet-stream"
    row.content_encoding = remote.content_encoding or ""
    row.content_language = remote.content_language or ""
    row.content_length = remote.content_length
    row.created_on = remote.created_on or EPOCH
    row.expires_on = remote.expires_on
    row.last_accessed_on = remote.last_accessed_on
    row.has_legal_hold = remote.has_legal_hold
    row.remaining_retention_days = remote.remaining_retention_days
    row.metadata_ = dict(remote.metadata)
    row.tags = dict(remote.tags)


async def _refresh_aggregates(session: AsyncSession, container_name: str) -> None:
    stmt = select(
        func.count(BlobTable.name),
        func.coalesce(func.sum(BlobTable.content_length), 0),
    ).where(BlobTable.container_name == container_name)
    count, total = (await session.execute(stmt)).one()
    await session.execute(
        update(ContainerTable)
        .where(ContainerTable.name == container_name)
        .values(blob_count=count, total_size=total)
    )


class CacheStore:
    """Queries and mutations of cached containers, blobs and uploads."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def _session(self) -> AbstractAsyncContextManager[AsyncSession]:
        return session_context(self._session_factory)

    # -------------------------------------------------------------------------
    # Containers
    # -------------------------------------------------------------------------

    async def get_container(self, name: str) -> ContainerTable | None:
        async with self._session() as session:
            return await session.get(ContainerTable, name)

    async def container_exists(self, name: str) -> bool:
        async with self._session() as session:
            stmt = select(ContainerTable.name).where(ContainerTable.name == name)
            return (await session.execute(stmt)).first() is not None

    async def upsert_container(self, remote: RemoteContainer) -> ContainerTable:
        """Insert or update a container row from remote truth.

        Blob aggregates are left untouched; they belong to the blob rows.
        """
        async with self._session() as session:
            row = await session.get(ContainerTable, remote.name)
            if row is None:
                row = ContainerTable(name=remote.name, blob_count=0, total_size=0)
                session.add(row)
            _apply_container(row, remote)
        return row

    async def remove_container(self, name: str) -> bool:
        """Delete a container row; its blobs go with it."""
        async with self._session() as session:
            result = await session.execute(
                delete(ContainerTable).where(ContainerTable.name == name)
            )
            return bool(result.rowcount)

    async def remove_containers(self, names: Iterable[str]) -> int:
        names = list(names)
        if not names:
            return 0
        async with self._session() as session:
            result = await session.execute(
                delete(ContainerTable).where(ContainerTable.name.in_(names))
            )
            return result.rowcount or 0

    async def list_containers(
        self, limit: int | None = None, offset: int = 0
    ) -> list[ContainerTable]:
        stmt = select(ContainerTable).order_by(ContainerTable.name).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            return list((await session.scalars(stmt)).all())

    async def list_container_names(self) -> set[str]:
        async with self._session() as session:
            return set((await session.scalars(select(ContainerTable.name))).all())

    async def refresh_container_aggregates(self, name: str) -> None:
        """Recompute blob_count and total_size from the container's blob rows."""
        async with self._session() as session:
            await _refresh_aggregates(session, name)

    # -------------------------------------------------------------------------
    # Blobs
    # -------------------------------------------------------------------------

    async def get_blob(self, container_name: str, name: str) -> BlobTable | None:
        async with self._session() as session:
            return await session.get(BlobTable, (container_name, name))

    async def blob_exists(self, container_name: str, name: str) -> bool:
        async with self._session() as session:
            stmt = select(BlobTable.name).where(
                BlobTable.container_name == container_name, BlobTable.name == name
            )
            return (await session.execute(stmt)).first() is not None

    async def upsert_blob(
        self, container_name: str, remote: RemoteBlob, refresh_aggregates: bool = True
    ) -> BlobTable:
        """Insert or update one blob row, optionally refreshing container aggregates."""
        async with self._session() as session:
            row = await session.get(BlobTable, (container_name, remote.name))
            if row is None:
                row = BlobTable(container_name=container_name, name=remote.name)
                session.add(row)
            _apply_blob(row, remote)
            if refresh_aggregates:
                await session.flush()
                await _refresh_aggregates(session, container_name)
        return row

    async def upsert_blobs(self, container_name: str, remotes: Sequence[RemoteBlob]) -> int:
        """Upsert a batch of blobs of one container in a single transaction."""
        if not remotes:
            return 0
        async with self._session() as session:
            stmt = select(BlobTable).where(
                BlobTable.container_name == container_name,
                BlobTable.name.in_([remote.name for remote in remotes]),
            )
            existing = {row.name: row for row in (await session.scalars(stmt)).all()}
            for remote in remotes:
                row = existing.get(remote.name)
                if row is None:
                    row = BlobTable(container_name=container_name, name=remote.name)
                    session.add(row)
                    existing[remote.name] = row
                _apply_blob(row, remote)
        return len(remotes)

    async def remove_blob(self, container_name: str, name: str) -> bool:
        """Delete a blob row and refresh the container aggregates."""
        async with self._session() as session:
            result = await session.execute(
                delete(BlobTable).where(
                    BlobTable.container_name == container_name, BlobTable.name == name
                )
            )
            await _refresh_aggregates(session, container_name)
            return bool(result.rowcount)

    async def remove_blobs(self, container_name: str, names: Iterable[str]) -> int:
        """Delete several blob rows of one container. Aggregates are not refreshed."""
        names = list(names)
        if not names:
            return 0
        async with self._session() as session:
            result = await session.execute(
                delete(BlobTable).where(
                    BlobTable.container_name == container_name, BlobTable.name.in_(names)
                )
            )
            return result.rowcount or 0

    async def list_blobs(
        self, container_name: str, limit: int | None = None, offset: int = 0
    ) -> list[BlobTable]:
        stmt = (
            select(BlobTable)
            .where(BlobTable.container_name == container_name)
            .order_by(BlobTable.name)
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session() as session:
            return list((await session.scalars(stmt)).all())

    async def list_blob_names(self, container_name: str) -> set[str]:
        stmt = select(BlobTable.name).where(BlobTable.container_name == container_name)
        async with self._session() as session:
            return set((await session.scalars(stmt)).all())

    # -------------------------------------------------------------------------
    # Uploads
    # -------------------------------------------------------------------------

    async def add_upload(self, row: UploadTable) -> UploadTable:
        async with self._session() as session:
            session.add(row)
        return row

    async def get_upload(self, upload_id: str) -> UploadTable | None:
        """Get an upload session with its staged blocks in staging order."""
        stmt = (
            select(UploadTable)
            .where(UploadTable.upload_id == upload_id)
            .options(selectinload(UploadTable.blocks))
        )
        async with self._session() as session:
            return (await session.scalars(stmt)).first()

    async def upsert_upload_block(
        self,
        upload_id: str,
        block_id: str,
        block_size: int,
        content_md5: str | None,
        uploaded_at: datetime | None = None,
    ) -> UploadBlockTable:
        """Record a staged block, replacing an earlier staging of the same id.

        Also marks the session as active at ``uploaded_at``. The block row is
        written with a single INSERT ... ON CONFLICT, so concurrent stagings
        of one block id both succeed and the last one wins.

        Raises:
            StorageError: NotFound if the session vanished meanwhile.
        """
        uploaded_at = uploaded_at or datetime.now(UTC)
        async with self._session() as session:
            touched = await session.execute(
                update(UploadTable)
                .where(UploadTable.upload_id == upload_id)
                .values(last_activity_at=uploaded_at)
            )
            if not touched.rowcount:
                raise StorageError.not_found("Upload", upload_id)

            stmt = sqlite_insert(UploadBlockTable).values(
                upload_id=upload_id,
                block_id=block_id,
                block_size=block_size,
                content_md5=content_md5,
                uploaded_at=uploaded_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[UploadBlockTable.upload_id, UploadBlockTable.block_id],
                set_={
                    "block_size": stmt.excluded.block_size,
                    "content_md5": stmt.excluded.content_md5,
                    "uploaded_at": stmt.excluded.uploaded_at,
                },
            )
            await session.execute(stmt)

            block = await session.scalar(
                select(UploadBlockTable).where(
                    UploadBlockTable.upload_id == upload_id,
                    UploadBlockTable.block_id == block_id,
                )
            )
        return block

    async def remove_upload(self, upload_id: str) -> bool:
        """Delete an upload session; its blocks go with it."""
        async with self._session() as session:
            result = await session.execute(
                delete(UploadTable).where(UploadTable.upload_id == upload_id)
            )
            return bool(result.rowcount)

    async def remove_stale_uploads(self, cutoff: datetime) -> int:
        """Delete upload sessions with no activity since ``cutoff``."""
        async with self._session() as session:
            result = await session.execute(
                delete(UploadTable).where(UploadTable.last_activity_at < cutoff)
            )
            removed = result.rowcount or 0
        if removed:
            logger.info("Removed %d stale upload sessions", removed)
        return removed

    async def list_uploads(self) -> list[tuple[UploadTable, int]]:
        """List upload sessions with their uploaded byte count, newest activity first."""
        uploaded = func.coalesce(func.sum(UploadBlockTable.block_size), 0).label("uploaded")
        stmt = (
            select(UploadTable, uploaded)
            .outerjoin(UploadBlockTable, UploadBlockTable.upload_id == UploadTable.upload_id)
            .group_by(UploadTable.upload_id)
            .order_by(UploadTable.last_activity_at.desc(), UploadTable.upload_id)
        )
        async with self._session() as session:
            return [(row, int(total)) for row, total in (await session.execute(stmt)).all()]

    # -------------------------------------------------------------------------
    # Dashboard
    # -------------------------------------------------------------------------

    async def get_totals(self) -> tuple[int, int, int, int]:
        """Return (container count, blob count, total size, total image size)."""
        async with self._session() as session:
            containers = await session.scalar(select(func.count(ContainerTable.name)))
            blobs, total = (
                await session.execute(
                    select(
                        func.count(BlobTable.name),
                        func.coalesce(func.sum(BlobTable.content_length), 0),
                    )
                )
            ).one()
            images = await session.scalar(
                select(func.coalesce(func.sum(BlobTable.content_length), 0)).where(
                    BlobTable.content_type.like("image/%")
                )
            )
        return int(containers or 0), int(blobs), int(total), int(images or 0)

    async def recent_containers(self, limit: int) -> list[tuple[ContainerTable, datetime]]:
        """Most recently active containers with their activity timestamp.

        A container's activity is the newer of its own last-modified and
        that of its newest blob.
        """
        newest_blob = (
            select(func.max(BlobTable.last_modified))
            .where(BlobTable.container_name == ContainerTable.name)
            .correlate(ContainerTable)
            .scalar_subquery()
        )
        activity = func.max(
            ContainerTable.last_modified,
            func.coalesce(newest_blob, ContainerTable.last_modified),
            type_=IsoTimestamp(),
        ).label("last_activity")
        stmt = (
            select(ContainerTable, activity)
            .order_by(activity.desc(), ContainerTable.name)
            .limit(limit)
        )
        async with self._session() as session:
            return [(row, when) for row, when in (await session.execute(stmt)).all()]

    async def recent_blobs(self, limit: int) -> list[BlobTable]:
        stmt = (
            select(BlobTable)
            .order_by(
                BlobTable.last_modified.desc(), BlobTable.container_name, BlobTable.name
            )
            .limit(limit)
        )
        async with self._session() as session:
            return list((await session.scalars(stmt)).all())
