"""Utility functions and helpers for download fulfillment."""

from photo_entitlements.utils.archive import (
    ArchiveTooLargeError,
    StoredCopiesArchive,
    stored_archive_size,
)
from photo_entitlements.utils.paths import (
    UnsafeAssetPathError,
    archive_file_name,
    copy_names,
    default_file_name,
    resolve_asset_path,
    sanitize_archive_name,
)

__all__ = [
    # Archives
    "ArchiveTooLargeError",
    "StoredCopiesArchive",
    "stored_archive_size",
    # Paths and names
    "UnsafeAssetPathError",
    "archive_file_name",
    "copy_names",
    "default_file_name",
    "resolve_asset_path",
    "sanitize_archive_name",
]
