"""Observability module for blobmirror.

Provides structured logging with context propagation:
- JSON or console formatting
- Request, sync pass and upload session identifiers on every record
"""

from blobmirror.observability.logging import (
    LogContext,
    configure_logging,
    request_id_var,
    sync_id_var,
    upload_id_var,
)

__all__ = [
    "configure_logging",
    "LogContext",
    "request_id_var",
    "sync_id_var",
    "upload_id_var",
]
