"""Configuration schema models.

Models for config/store.yaml.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Entitlement store backend settings."""

    backend: Literal["sql", "memory"] = Field(
        default="sql", description="Store backend: 'sql' (durable) or 'memory' (process-local)"
    )
    database_url: str = Field(
        default="sqlite:///data/entitlements.db", description="SQLAlchemy database URL"
    )
    max_cas_attempts: int = Field(
        default=5, ge=1, description="Retries for conflicting compare-and-set writes"
    )


class DownloadConfig(BaseModel):
    """Download fulfillment settings."""

    assets_root: str = Field(default="assets", description="Directory asset paths are resolved against")
    chunk_size: int = Field(default=64 * 1024, gt=0, description="Streaming chunk size in bytes")
    archive_name_max_length: int = Field(
        default=100, gt=0, description="Maximum length of the sanitised archive base name"
    )


class NotificationConfig(BaseModel):
    """Payment notification settings."""

    signing_secret: Optional[str] = Field(
        None, description="HMAC-SHA256 secret for the X-Signature header, null disables the check"
    )
    session_id_prefix: str = Field(
        default="", description="Required session id prefix (e.g. 'cs_'), empty disables the check"
    )


class StoreConfig(BaseModel):
    """Root configuration model for config/store.yaml."""

    storage: StorageConfig = Field(default_factory=StorageConfig, description="Entitlement store")
    downloads: DownloadConfig = Field(default_factory=DownloadConfig, description="Downloads")
    notifications: NotificationConfig = Field(
        default_factory=NotificationConfig, description="Payment notifications"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "storage": {
                    "backend": "sql",
                    "database_url": "sqlite:///data/entitlements.db",
                    "max_cas_attempts": 5,
                },
                "downloads": {
                    "assets_root": "assets",
                    "chunk_size": 65536,
                    "archive_name_max_length": 100,
                },
                "notifications": {
                    "signing_secret": None,
                    "session_id_prefix": "cs_",
                },
            }
        }
