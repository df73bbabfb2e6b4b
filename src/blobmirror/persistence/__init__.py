"""Local relational cache of the remote store."""

from blobmirror.persistence.cache import CacheStore
from blobmirror.persistence.db import (
    close_db,
    create_cache_engine,
    create_session_factory,
    get_engine,
    get_session_factory,
    health_check,
    init_db,
    session_context,
)
from blobmirror.persistence.tables import (
    CURRENT_SCHEMA_VERSION,
    Base,
    BlobTable,
    ContainerTable,
    SchemaVersionTable,
    UploadBlockTable,
    UploadTable,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "Base",
    "BlobTable",
    "CacheStore",
    "ContainerTable",
    "SchemaVersionTable",
    "UploadBlockTable",
    "UploadTable",
    "close_db",
    "create_cache_engine",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "health_check",
    "init_db",
    "session_context",
]
