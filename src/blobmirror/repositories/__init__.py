"""Write-through repository and upload session engine."""

from blobmirror.repositories.models import (
    BlobDownload,
    BlobDTO,
    ContainerDTO,
    CreateContainerRequest,
    CreateUploadRequest,
    Dashboard,
    DashboardStats,
    RecentBlob,
    RecentContainer,
    UpdateBlobRequest,
    UpdateContainerRequest,
    UploadStatus,
    UploadSummary,
)
from blobmirror.repositories.storage import StorageRepository, build_dashboard
from blobmirror.repositories.uploads import BlockMeter, UploadSessionEngine

__all__ = [
    "BlobDTO",
    "BlobDownload",
    "BlockMeter",
    "ContainerDTO",
    "CreateContainerRequest",
    "CreateUploadRequest",
    "Dashboard",
    "DashboardStats",
    "RecentBlob",
    "RecentContainer",
    "StorageRepository",
    "UpdateBlobRequest",
    "UpdateContainerRequest",
    "UploadSessionEngine",
    "UploadStatus",
    "UploadSummary",
    "build_dashboard",
]
