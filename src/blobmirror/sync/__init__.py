"""Reconciliation of the cache against the remote store."""

from blobmirror.sync.service import CacheSynchronizer, SyncResult

__all__ = ["CacheSynchronizer", "SyncResult"]
