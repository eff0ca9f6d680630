"""
Filesystem entries backed by Google Drive objects.

An entry is either a DirectoryEntry or a FileEntry. Both carry the Drive
file ID and the full slash-separated path, which is computed once from the
parent's path when the entry is built and never looked up again.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

# Google Drive folder MIME type
FOLDER_MIME = "application/vnd.google-apps.folder"

# Fields requested for every object returned by a mutation or a listing
FILE_FIELDS = (
    "id, name, mimeType, size, trashed, parents, createdTime, modifiedTime, viewedByMeTime"
)
LIST_FIELDS = f"nextPageToken, files({FILE_FIELDS})"


@dataclass(frozen=True)
class DirectoryEntry:
    file_id: str
    path: str
    name: str
    is_root: bool = False
    modified_at: datetime | None = None
    created_at: datetime | None = None
    accessed_at: datetime | None = None


@dataclass(frozen=True)
class FileEntry:
    file_id: str
    path: str
    name: str
    # None while the size is unknown (metadata-only object, upload pending)
    size: int | None = None
    mime_type: str = "application/octet-stream"
    modified_at: datetime | None = None
    created_at: datetime | None = None
    accessed_at: datetime | None = None


Entry = Union[DirectoryEntry, FileEntry]


def combine_path(base: str, name: str) -> str:
    """Append a name to a directory path."""
    if base.endswith("/"):
        return base + name
    return f"{base}/{name}"


def parent_path(path: str) -> str:
    """Return the parent directory of a path. The parent of '/' is '/'."""
    path = path.rstrip("/")
    if not path:
        return "/"
    return path.rsplit("/", 1)[0] or "/"


def is_folder(meta: dict) -> bool:
    return meta.get("mimeType", "") == FOLDER_MIME


def parse_size(meta: dict) -> int | None:
    """Return the Drive-reported size, or None when Drive has none."""
    size = meta.get("size")
    if size is None or size == "":
        return None
    return int(size)


def parse_time(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as returned by the Drive API."""
    if not value:
        return None
    # Drive API returns RFC 3339: "2024-06-15T10:30:00.000Z"
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_time(value: datetime) -> str:
    """Format a datetime as RFC 3339 UTC for the Drive API. Naive values are UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def directory_from_metadata(meta: dict, path: str, is_root: bool = False) -> DirectoryEntry:
    return DirectoryEntry(
        file_id=meta["id"],
        path=path,
        name=meta.get("name", ""),
        is_root=is_root,
        modified_at=parse_time(meta.get("modifiedTime")),
        created_at=parse_time(meta.get("createdTime")),
        accessed_at=parse_time(meta.get("viewedByMeTime")),
    )


def file_from_metadata(meta: dict, path: str, size: int | None = None) -> FileEntry:
    return FileEntry(
        file_id=meta["id"],
        path=path,
        name=meta.get("name", ""),
        size=size,
        mime_type=meta.get("mimeType") or "application/octet-stream",
        modified_at=parse_time(meta.get("modifiedTime")),
        created_at=parse_time(meta.get("createdTime")),
        accessed_at=parse_time(meta.get("viewedByMeTime")),
    )


def require_file(entry: Entry) -> FileEntry:
    if not isinstance(entry, FileEntry):
        raise TypeError(f"Expected a file entry, got {type(entry).__name__}: {entry.path}")
    return entry


def require_directory(entry: Entry) -> DirectoryEntry:
    if not isinstance(entry, DirectoryEntry):
        raise TypeError(f"Expected a directory entry, got {type(entry).__name__}: {entry.path}")
    return entry
