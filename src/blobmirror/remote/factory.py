"""Remote store factory for blobmirror."""

from __future__ import annotations

from blobmirror.config import settings
from blobmirror.remote.azure import AzureRemoteStore
from blobmirror.remote.base import RemoteStore

_remote_store: RemoteStore | None = None


def get_remote_store() -> RemoteStore:
    """Return a singleton RemoteStore based on settings."""
    global _remote_store
    if _remote_store is not None:
        return _remote_store

    if not settings.azure_connection_string and not settings.azure_account_url:
        raise ValueError(
            "AZURE_STORAGE_CONNECTION_STRING or AZURE_ACCOUNT_URL is required"
        )
    credential = settings.azure_account_key or settings.azure_sas_token
    _remote_store = AzureRemoteStore(
        connection_string=settings.azure_connection_string,
        account_url=settings.azure_account_url,
        credential=credential,
    )
    return _remote_store


async def close_remote_store() -> None:
    """Close and forget the singleton RemoteStore."""
    global _remote_store
    if _remote_store is not None:
        await _remote_store.close()
        _remote_store = None
