"""Asset path resolution and download file naming."""

import re
from pathlib import Path, PurePosixPath

_FORBIDDEN_NAME_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")


class UnsafeAssetPathError(ValueError):
    """Raised when an asset path points outside the assets root."""

    pass


def resolve_asset_path(assets_root: Path, asset_path: str) -> Path:
    """Resolve an asset path against the assets root.

    Leading slashes are ignored, so "/photos/a.jpg" and "photos/a.jpg" are the
    same asset. Symlinks are resolved before the containment check.

    Args:
        assets_root: Directory holding downloadable assets
        asset_path: Asset path as stored on the line item

    Returns:
        Absolute path inside assets_root

    Raises:
        UnsafeAssetPathError: If the resolved path escapes assets_root
    """
    root = assets_root.resolve()
    candidate = (root / asset_path.lstrip("/\\")).resolve()
    if candidate != root and root not in candidate.parents:
        raise UnsafeAssetPathError(f"Asset path escapes assets root: {asset_path}")
    return candidate


def default_file_name(asset_path: str) -> str:
    """Derive a file name from an asset path (its last component)."""
    return PurePosixPath(asset_path.replace("\\", "/")).name


def sanitize_archive_name(title: str, max_length: int = 100) -> str:
    """Make a title safe to use as a download file name.

    Removes characters not allowed in file names, collapses whitespace to
    underscores and trims the result.

    Example:
        sanitize_archive_name('Sunset: "Golden" Hour') -> "Sunset_Golden_Hour"
    """
    name = _FORBIDDEN_NAME_CHARS.sub("", title)
    name = _WHITESPACE.sub("_", name)
    name = _REPEATED_UNDERSCORES.sub("_", name)
    name = name.strip("_")
    return name[:max_length]


def copy_names(file_name: str, quantity: int) -> list[str]:
    """Entry names for the copies inside a bundle.

    Example:
        copy_names("sunset.jpg", 2) -> ["sunset_copy_1.jpg", "sunset_copy_2.jpg"]
    """
    path = PurePosixPath(file_name)
    stem, suffix = path.stem, path.suffix
    return [f"{stem}_copy_{n}{suffix}" for n in range(1, quantity + 1)]


def archive_file_name(title: str, file_name: str, quantity: int, max_length: int = 100) -> str:
    """Download name of a bundle, e.g. "Sunset_Over_the_Bay_x3.zip".

    Falls back to the asset's file stem when the title sanitizes to nothing.
    """
    base = sanitize_archive_name(title, max_length) or PurePosixPath(file_name).stem or "download"
    if quantity > 1:
        return f"{base}_x{quantity}.zip"
    return f"{base}.zip"
