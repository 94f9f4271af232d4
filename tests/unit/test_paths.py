"""Tests for asset path resolution and download naming."""

import pytest

from photo_entitlements.utils.paths import (
    UnsafeAssetPathError,
    archive_file_name,
    copy_names,
    default_file_name,
    resolve_asset_path,
    sanitize_archive_name,
)


class TestResolveAssetPath:
    """Test containment of asset paths."""

    def test_relative_path(self, assets_dir):
        path = resolve_asset_path(assets_dir, "photos/sunset-over-bay.jpg")
        assert path == (assets_dir / "photos" / "sunset-over-bay.jpg").resolve()

    def test_leading_slash_ignored(self, assets_dir):
        assert resolve_asset_path(assets_dir, "/photos/a.jpg") == resolve_asset_path(
            assets_dir, "photos/a.jpg"
        )

    @pytest.mark.parametrize("asset_path", ["../secret.txt", "photos/../../secret.txt", "/../x"])
    def test_traversal_rejected(self, assets_dir, asset_path):
        with pytest.raises(UnsafeAssetPathError):
            resolve_asset_path(assets_dir, asset_path)

    def test_symlink_out_of_root_rejected(self, assets_dir, tmp_path):
        outside = tmp_path / "outside.jpg"
        outside.write_bytes(b"x")
        (assets_dir / "photos" / "link.jpg").symlink_to(outside)

        with pytest.raises(UnsafeAssetPathError):
            resolve_asset_path(assets_dir, "photos/link.jpg")


class TestNaming:
    """Test file and archive names."""

    def test_default_file_name(self):
        assert default_file_name("photos/night/city.jpg") == "city.jpg"
        assert default_file_name("photos\\night\\city.jpg") == "city.jpg"

    def test_sanitize_archive_name(self):
        assert sanitize_archive_name('Sunset: "Golden" Hour') == "Sunset_Golden_Hour"
        assert sanitize_archive_name("  a/b\\c  d ") == "abc_d"

    def test_sanitize_truncates(self):
        assert sanitize_archive_name("x" * 300, max_length=100) == "x" * 100

    def test_copy_names(self):
        assert copy_names("sunset.jpg", 3) == [
            "sunset_copy_1.jpg",
            "sunset_copy_2.jpg",
            "sunset_copy_3.jpg",
        ]

    def test_copy_names_without_extension(self):
        assert copy_names("raw", 2) == ["raw_copy_1", "raw_copy_2"]

    def test_archive_file_name(self):
        assert archive_file_name("Sunset Over the Bay", "sunset.jpg", 3) == "Sunset_Over_the_Bay_x3.zip"

    def test_archive_file_name_falls_back_to_file_stem(self):
        assert archive_file_name('???', "sunset.jpg", 2) == "sunset_x2.zip"
