"""Chunked-upload session engine.

An upload session moves through Created (no blocks) -> Staging (blocks
recorded) -> Committed or Cancelled. Both terminal states delete the session
record; operations on a session id that no longer exists fail NotFound.

Block content streams straight through to the remote store's block-staging
primitive; the session only records each block's id, size and MD5.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from collections.abc import AsyncIterator, Sequence
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from blobmirror.config import settings
from blobmirror.errors import StorageError
from blobmirror.observability.logging import LogContext
from blobmirror.persistence.tables import UploadTable
from blobmirror.remote.base import BlockContent
from blobmirror.remote.models import BlobProperties, BlockInfo
from blobmirror.repositories.models import BlobDTO, CreateUploadRequest, UploadStatus, UploadSummary
from blobmirror.repositories.storage import StorageRepository
from blobmirror.repositories.validation import (
    validate_blob_name,
    validate_block_id,
    validate_block_size,
    validate_container_name,
    validate_content_length,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_CONTENT_ENCODING = ""
DEFAULT_CONTENT_LANGUAGE = "en-US"


def compute_progress(uploaded_length: int, content_length: int) -> float:
    """Percentage of the declared length uploaded so far."""
    if content_length <= 0:
        return 0.0
    return uploaded_length * 100 / content_length


class BlockMeter:
    """Counts and hashes block content while it streams to the remote store."""

    def __init__(self) -> None:
        self.size = 0
        self._md5 = hashlib.md5()

    def _update(self, chunk: bytes) -> None:
        self.size += len(chunk)
        self._md5.update(chunk)

    async def wrap(self, content: BlockContent) -> AsyncIterator[bytes]:
        if isinstance(content, (bytes, bytearray, memoryview)):
            chunk = bytes(content)
            self._update(chunk)
            yield chunk
            return
        async for chunk in content:
            self._update(chunk)
            yield chunk

    @property
    def content_md5(self) -> str:
        """Base64 MD5 of the bytes seen so far."""
        return base64.b64encode(self._md5.digest()).decode("ascii")


class UploadSessionEngine:
    """Create, stage, commit and cancel chunked uploads."""

    def __init__(self, repository: StorageRepository, max_upload_size: int | None = None):
        self.repository = repository
        self.remote = repository.remote
        self.cache = repository.cache
        self.max_upload_size = max_upload_size or settings.max_upload_size

    async def create_session(self, request: CreateUploadRequest) -> UploadStatus:
        """Open an upload session for a blob that does not exist yet.

        Raises:
            StorageError: InvalidArgument for bad names or length,
                NotFound if the container is not cached,
                AlreadyExists if the blob is cached.
        """
        container_name = validate_container_name(request.container_name)
        blob_name = validate_blob_name(request.blob_name)
        validate_content_length(request.content_length, self.max_upload_size)

        if not await self.cache.container_exists(container_name):
            raise StorageError.not_found("Container", container_name)
        if await self.cache.blob_exists(container_name, blob_name):
            raise StorageError.already_exists("Blob", f"{container_name}/{blob_name}")

        now = datetime.now(UTC)
        row = UploadTable(
            upload_id=str(uuid4()),
            container_name=container_name,
            blob_name=blob_name,
            content_length=request.content_length,
            content_type=request.content_type,
            content_encoding=request.content_encoding,
            content_language=request.content_language,
            metadata_=dict(request.metadata),
            tags=dict(request.tags),
            created_at=now,
            last_activity_at=now,
        )
        await self.cache.add_upload(row)
        logger.info(
            "Created upload session %s for %s/%s (%d bytes)",
            row.upload_id,
            container_name,
            blob_name,
            row.content_length,
        )
        return self._status(row, [], 0)

    async def stage_block(
        self,
        upload_id: str,
        block_id: str,
        content: BlockContent,
        declared_size: int,
        content_md5: str | None = None,
    ) -> BlockInfo:
        """Stream one block to the remote store and record it.

        Re-staging a block id replaces the earlier block.

        Raises:
            StorageError: NotFound if the session does not exist,
                InvalidArgument for a bad block id, a size or MD5 mismatch,
                or the translated remote failure. Nothing is recorded on error.
        """
        with LogContext(upload_id=upload_id):
            upload = await self.cache.get_upload(upload_id)
            if upload is None:
                raise StorageError.not_found("Upload", upload_id)
            validate_block_id(block_id)
            validate_block_size(declared_size, self.max_upload_size)

            meter = BlockMeter()
            info = await self.remote.stage_block(
                upload.container_name,
                upload.blob_name,
                block_id,
                meter.wrap(content),
                declared_size,
            )
            if not info.is_success:
                raise StorageError.from_status(
                    info.status_code,
                    f"Staging block '{block_id}' failed with status {info.status_code}",
                    upload_id,
                )
            if meter.size != declared_size:
                raise StorageError.invalid_argument(
                    f"Block '{block_id}' declared {declared_size} bytes but {meter.size} were sent",
                    block_id,
                )
            if content_md5 is not None and content_md5 != meter.content_md5:
                raise StorageError.invalid_argument(
                    f"Block '{block_id}' failed the MD5 integrity check", block_id
                )

            await self.cache.upsert_upload_block(upload_id, block_id, meter.size, meter.content_md5)
            logger.debug("Staged block %s (%d bytes)", block_id, meter.size)
            return BlockInfo(
                block_id=block_id, status_code=info.status_code, content_md5=meter.content_md5
            )

    async def commit(self, upload_id: str, block_ids: Sequence[str]) -> BlobDTO:
        """Commit staged blocks, in the given order, as the blob's content.

        Raises:
            StorageError: NotFound if the session does not exist,
                InvalidArgument naming any block id that was never staged.
        """
        with LogContext(upload_id=upload_id):
            upload = await self.cache.get_upload(upload_id)
            if upload is None:
                raise StorageError.not_found("Upload", upload_id)

            staged = {block.block_id for block in upload.blocks}
            missing = list(dict.fromkeys(bid for bid in block_ids if bid not in staged))
            if missing:
                raise StorageError.invalid_argument(
                    f"Blocks were not staged for upload '{upload_id}': {', '.join(missing)}",
                    upload_id,
                )

            properties = BlobProperties(
                content_type=upload.content_type or DEFAULT_CONTENT_TYPE,
                content_encoding=upload.content_encoding or DEFAULT_CONTENT_ENCODING,
                content_language=upload.content_language or DEFAULT_CONTENT_LANGUAGE,
                metadata=dict(upload.metadata_),
                tags=dict(upload.tags),
            )
            remote = await self.remote.commit_block_list(
                upload.container_name, upload.blob_name, list(block_ids), properties
            )
            blob = await self.repository.apply_remote_blob(upload.container_name, remote)
            await self.cache.remove_upload(upload_id)
            logger.info(
                "Committed upload %s as %s/%s (%d blocks, %d bytes)",
                upload_id,
                blob.container_name,
                blob.name,
                len(block_ids),
                blob.content_length,
            )
            return blob

    async def cancel(self, upload_id: str) -> bool:
        """Drop a session and its blocks. Returns False if it did not exist."""
        removed = await self.cache.remove_upload(upload_id)
        if removed:
            logger.info("Cancelled upload session %s", upload_id)
        return removed

    async def get_status(self, upload_id: str) -> UploadStatus:
        upload = await self.cache.get_upload(upload_id)
        if upload is None:
            raise StorageError.not_found("Upload", upload_id)
        block_ids = [block.block_id for block in upload.blocks]
        uploaded = sum(block.block_size for block in upload.blocks)
        return self._status(upload, block_ids, uploaded)

    async def list_uploads(self) -> list[UploadSummary]:
        """Summaries of open sessions, most recently active first."""
        return [
            UploadSummary(
                upload_id=row.upload_id,
                container_name=row.container_name,
                blob_name=row.blob_name,
                last_activity_at=row.last_activity_at,
                progress=compute_progress(uploaded, row.content_length),
            )
            for row, uploaded in await self.cache.list_uploads()
        ]

    async def cleanup_stale(self, timeout: timedelta | None = None) -> int:
        """Delete sessions idle for longer than ``timeout``."""
        if timeout is None:
            timeout = timedelta(minutes=settings.upload_timeout_minutes)
        cutoff = datetime.now(UTC) - timeout
        return await self.cache.remove_stale_uploads(cutoff)

    @staticmethod
    def _status(upload: UploadTable, block_ids: list[str], uploaded: int) -> UploadStatus:
        return UploadStatus(
            upload_id=upload.upload_id,
            container_name=upload.container_name,
            blob_name=upload.blob_name,
            content_length=upload.content_length,
            uploaded_length=uploaded,
            progress=compute_progress(uploaded, upload.content_length),
            block_ids=block_ids,
            created_at=upload.created_at,
            last_activity_at=upload.last_activity_at,
        )
