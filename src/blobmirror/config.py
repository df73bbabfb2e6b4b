from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Largest object accepted by the chunked-upload protocol (10 GiB)
MAX_UPLOAD_SIZE = 10 * 1024 * 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BLOBMIRROR_", env_file=".env", extra="ignore")

    app_name: str = "blobmirror"
    env: str = "dev"

    # Logging
    log_level: str = "INFO"
    log_json: bool = Field(default=False, validation_alias="LOG_JSON")

    # Cache database
    cache_database_url: str = Field(
        default="sqlite+aiosqlite:///./blobmirror-cache.db",
        validation_alias="CACHE_DATABASE_URL",
    )

    # Azure Blob Storage (or Azurite)
    azure_connection_string: str | None = Field(
        default=None, validation_alias="AZURE_STORAGE_CONNECTION_STRING"
    )
    azure_account_url: str | None = Field(default=None, validation_alias="AZURE_ACCOUNT_URL")
    azure_account_key: str | None = Field(default=None, validation_alias="AZURE_ACCOUNT_KEY")
    azure_sas_token: str | None = Field(default=None, validation_alias="AZURE_SAS_TOKEN")

    # Cache synchronization
    sync_batch_size: int = Field(default=100, validation_alias="SYNC_BATCH_SIZE")
    upload_timeout_minutes: int = Field(default=15, validation_alias="UPLOAD_TIMEOUT_MINUTES")

    # Uploads
    max_upload_size: int = Field(default=MAX_UPLOAD_SIZE, validation_alias="MAX_UPLOAD_SIZE")

    # Dashboard
    recent_items_limit: int = Field(default=10, validation_alias="RECENT_ITEMS_LIMIT")


settings = Settings()
