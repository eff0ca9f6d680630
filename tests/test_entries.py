"""
Unit tests for gdrive_ftp.entries module.
"""

from datetime import datetime, timedelta, timezone

import pytest
from drive_helpers import make_folder_meta, make_meta

from gdrive_ftp.entries import (
    DirectoryEntry,
    FileEntry,
    combine_path,
    directory_from_metadata,
    file_from_metadata,
    format_time,
    is_folder,
    parent_path,
    parse_size,
    parse_time,
    require_directory,
    require_file,
)


class TestPaths:
    def test_combine_with_root(self):
        assert combine_path("/", "a.txt") == "/a.txt"

    def test_combine_nested(self):
        assert combine_path("/docs", "a.txt") == "/docs/a.txt"

    def test_parent_of_nested(self):
        assert parent_path("/docs/a.txt") == "/docs"

    def test_parent_of_top_level(self):
        assert parent_path("/a.txt") == "/"

    def test_parent_of_root_is_root(self):
        assert parent_path("/") == "/"


class TestMetadata:
    def test_is_folder(self):
        assert is_folder(make_folder_meta()) is True
        assert is_folder(make_meta()) is False

    def test_parse_size(self):
        assert parse_size({"size": "42"}) == 42

    def test_parse_size_missing(self):
        """Drive omits size for metadata-only objects."""
        assert parse_size({}) is None

    def test_parse_time(self):
        result = parse_time("2024-06-15T10:30:00.000Z")
        assert result == datetime(2024, 6, 15, 10, 30, tzinfo=timezone.utc)

    def test_parse_time_empty(self):
        assert parse_time(None) is None

    def test_format_time_converts_to_utc(self):
        value = datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_time(value) == "2024-01-01T10:00:00Z"

    def test_format_time_naive_is_utc(self):
        assert format_time(datetime(2024, 1, 1, 12, 0)) == "2024-01-01T12:00:00Z"

    def test_file_from_metadata(self):
        entry = file_from_metadata(make_meta("f1", "a.txt"), "/a.txt", 10)

        assert entry == FileEntry(
            file_id="f1",
            path="/a.txt",
            name="a.txt",
            size=10,
            mime_type="text/plain",
            modified_at=datetime(2024, 6, 15, 10, 30, tzinfo=timezone.utc),
        )

    def test_directory_from_metadata(self):
        entry = directory_from_metadata(make_folder_meta("d1", "docs"), "/docs")

        assert entry.file_id == "d1"
        assert entry.path == "/docs"
        assert entry.is_root is False


class TestVariantChecks:
    def test_require_file_rejects_directory(self):
        with pytest.raises(TypeError):
            require_file(DirectoryEntry("d1", "/docs", "docs"))

    def test_require_directory_rejects_file(self):
        with pytest.raises(TypeError):
            require_directory(FileEntry("f1", "/a.txt", "a.txt"))

    def test_require_passes_matching_variant(self):
        entry = FileEntry("f1", "/a.txt", "a.txt")
        assert require_file(entry) is entry
