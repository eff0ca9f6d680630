"""
Google Drive filesystem for the FTP server.

Drive is ID-based and eventually consistent: folders are objects with a
special MIME type, deleted objects linger in the trash, and listings come
back in pages. GoogleDriveFileSystem turns that into directory and file
entries with synthesized paths.

Uploads either go to Drive before the call returns, or (background mode)
are staged locally and handed back as a BackgroundUpload. While such an
upload runs, listings show the staged size for the file.
"""

from __future__ import annotations

import io
import logging
import threading
from typing import BinaryIO

from google.auth.transport.requests import AuthorizedSession
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from .config import GoogleDriveConfig, UploadConfig
from .download import DriveDownloadStream, open_media
from .entries import (
    FILE_FIELDS,
    FOLDER_MIME,
    DirectoryEntry,
    Entry,
    FileEntry,
    combine_path,
    directory_from_metadata,
    file_from_metadata,
    format_time,
    is_folder,
    parent_path,
    parse_size,
    require_directory,
    require_file,
)
from .errors import RegistryClosedError, UploadError, translate_http_error
from .gdrive_query import child_by_name_query, children_query, list_files, raise_if_cancelled
from .temp_data import TemporaryDataFactory
from .transfers import BackgroundUpload, TransferRegistry

logger = logging.getLogger(__name__)

UPLOAD_MIME = "application/octet-stream"
DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024


def resolve_shared_drive(service, shared_drive: str | None, num_retries: int = 0) -> str | None:
    """Resolve a shared drive name to its ID. IDs are returned unchanged."""
    if not shared_drive:
        return None

    # If it looks like a Drive ID already, use it directly
    if len(shared_drive) > 20 and " " not in shared_drive:
        return shared_drive

    try:
        result = service.drives().list(q=f"name='{shared_drive}'", pageSize=1).execute(
            num_retries=num_retries
        )
    except HttpError as e:
        raise translate_http_error("resolve_shared_drive", e) from e

    drives = result.get("drives", [])
    if not drives:
        raise ValueError(f"Shared drive not found: {shared_drive}")
    drive_id = drives[0]["id"]
    logger.info("Resolved shared drive '%s' -> %s", shared_drive, drive_id)
    return drive_id


def _declared_size(data: BinaryIO) -> int | None:
    """Remaining bytes of a seekable stream, None for non-seekable ones."""
    seekable = getattr(data, "seekable", None)
    if seekable is None or not seekable():
        return None
    position = data.tell()
    end = data.seek(0, io.SEEK_END)
    data.seek(position)
    return end - position


class GoogleDriveFileSystem:
    """
    Directory/file operations on top of the Drive API v3.

    The Drive service object is not thread-safe, so every request is executed
    under a service lock. The transfer registry has its own lock, which is
    never held while waiting for Drive.
    """

    supports_non_empty_directory_delete = True
    supports_append = False

    def __init__(
        self,
        service,
        root_metadata: dict,
        temp_data_factory: TemporaryDataFactory,
        use_background_upload: bool = True,
        session: AuthorizedSession | None = None,
        shared_drive_id: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float | None = None,
        num_retries: int = 0,
    ):
        self.service = service
        self.session = session
        self._temp_data_factory = temp_data_factory
        self._use_background_upload = use_background_upload
        self._shared_drive_id = shared_drive_id
        self._chunk_size = chunk_size
        self._timeout = timeout
        self._num_retries = num_retries
        self._service_lock = threading.Lock()
        self._uploads = TransferRegistry()
        self.root = directory_from_metadata(root_metadata, "/", is_root=True)
        logger.info(
            "GoogleDriveFileSystem initialized (root=%s, background uploads=%s)",
            self.root.file_id,
            use_background_upload,
        )

    @classmethod
    def from_config(
        cls, credentials, gdrive_config: GoogleDriveConfig, upload_config: UploadConfig
    ) -> GoogleDriveFileSystem:
        """Build the Drive service and session and resolve the root folder."""
        service = build("drive", "v3", credentials=credentials)
        shared_drive_id = resolve_shared_drive(
            service, gdrive_config.shared_drive, gdrive_config.num_retries
        )

        root_id = gdrive_config.root_folder_id
        if shared_drive_id and root_id == "root":
            root_id = shared_drive_id

        kwargs = {"fileId": root_id, "fields": FILE_FIELDS}
        if shared_drive_id:
            kwargs["supportsAllDrives"] = True
        try:
            root_metadata = service.files().get(**kwargs).execute(
                num_retries=gdrive_config.num_retries
            )
        except HttpError as e:
            raise translate_http_error(f"get_root({root_id})", e) from e

        return cls(
            service,
            root_metadata,
            TemporaryDataFactory(upload_config.spool_memory_bytes, upload_config.temp_dir),
            use_background_upload=upload_config.background,
            session=AuthorizedSession(credentials),
            shared_drive_id=shared_drive_id,
            chunk_size=upload_config.chunk_size_bytes,
            num_retries=gdrive_config.num_retries,
        )

    @property
    def uploads(self) -> TransferRegistry:
        return self._uploads

    def _execute(self, operation: str, request) -> dict:
        with self._service_lock:
            try:
                return request.execute(num_retries=self._num_retries)
            except HttpError as e:
                logger.debug("%s failed: %s", operation, e)
                raise translate_http_error(operation, e) from e

    def _mutation_kwargs(self, **kwargs) -> dict:
        kwargs["fields"] = FILE_FIELDS
        if self._shared_drive_id:
            kwargs["supportsAllDrives"] = True
        return kwargs

    def _query(self, operation: str, query: str, cancel: threading.Event | None) -> list[dict]:
        return list_files(
            self.service.files(),
            query,
            lambda request: self._execute(operation, request),
            cancel=cancel,
            shared_drive_id=self._shared_drive_id,
        )

    def _convert_entries(self, directory: DirectoryEntry, items: list[dict]) -> list[Entry]:
        """Turn Drive objects into entries, skipping trashed ones.

        Files with a pending background upload report the staged size.
        """
        result: list[Entry] = []
        with self._uploads.locked() as uploads:
            for item in items:
                if item.get("trashed"):
                    continue
                path = combine_path(directory.path, item.get("name", ""))
                if is_folder(item):
                    result.append(directory_from_metadata(item, path))
                    continue
                upload = uploads.get(item["id"])
                size = upload.file_size if upload is not None else parse_size(item)
                result.append(file_from_metadata(item, path, size))
        return result

    def _rebuild(self, entry: Entry, meta: dict, path: str) -> Entry:
        """Build an entry of the same kind as ``entry`` from fresh metadata."""
        if isinstance(entry, DirectoryEntry):
            return directory_from_metadata(meta, path, entry.is_root)
        entry = require_file(entry)
        size = parse_size(meta)
        if size is None:
            size = entry.size
        return file_from_metadata(meta, path, size)

    def list_children(
        self, directory: DirectoryEntry, cancel: threading.Event | None = None
    ) -> list[Entry]:
        """List the non-trashed children of a directory, in Drive order."""
        directory = require_directory(directory)
        items = self._query(f"list_children({directory.path})", children_query(directory.file_id), cancel)
        entries = self._convert_entries(directory, items)
        logger.debug("Listed %d entries in %s", len(entries), directory.path)
        return entries

    def find_child_by_name(
        self, directory: DirectoryEntry, name: str, cancel: threading.Event | None = None
    ) -> Entry | None:
        """Find a child by exact name. If Drive has duplicates, the first one wins."""
        directory = require_directory(directory)
        items = self._query(
            f"find_child_by_name({combine_path(directory.path, name)})",
            child_by_name_query(directory.file_id, name),
            cancel,
        )
        entries = self._convert_entries(directory, items)
        return entries[0] if entries else None

    def move(
        self,
        source_parent: DirectoryEntry,
        entry: Entry,
        target_parent: DirectoryEntry,
        new_name: str,
        cancel: threading.Event | None = None,
    ) -> Entry:
        """Rename and/or re-parent an entry with a single update request."""
        source_parent = require_directory(source_parent)
        target_parent = require_directory(target_parent)
        raise_if_cancelled(cancel)
        logger.debug("Moving %s -> %s", entry.path, combine_path(target_parent.path, new_name))

        kwargs = self._mutation_kwargs(fileId=entry.file_id, body={"name": new_name})
        if source_parent.file_id != target_parent.file_id:
            kwargs["addParents"] = target_parent.file_id
            kwargs["removeParents"] = source_parent.file_id

        meta = self._execute(f"move({entry.path})", self.service.files().update(**kwargs))
        path = combine_path(target_parent.path, meta.get("name") or new_name)
        return self._rebuild(entry, meta, path)

    def delete(self, entry: Entry, cancel: threading.Event | None = None) -> None:
        """Move an entry to the Drive trash. Non-empty directories are allowed."""
        if not isinstance(entry, (DirectoryEntry, FileEntry)):
            raise TypeError(f"Not a filesystem entry: {entry!r}")
        if isinstance(entry, DirectoryEntry) and entry.is_root:
            raise PermissionError("Cannot delete the root directory")
        raise_if_cancelled(cancel)

        kwargs = {"fileId": entry.file_id, "body": {"trashed": True}}
        if self._shared_drive_id:
            kwargs["supportsAllDrives"] = True
        self._execute(f"delete({entry.path})", self.service.files().update(**kwargs))
        logger.debug("Trashed %s", entry.path)

    def create_directory(
        self, parent: DirectoryEntry, name: str, cancel: threading.Event | None = None
    ) -> DirectoryEntry:
        parent = require_directory(parent)
        raise_if_cancelled(cancel)
        body = {"name": name, "mimeType": FOLDER_MIME, "parents": [parent.file_id]}
        meta = self._execute(
            f"create_directory({combine_path(parent.path, name)})",
            self.service.files().create(**self._mutation_kwargs(body=body)),
        )
        return directory_from_metadata(meta, combine_path(parent.path, meta.get("name") or name))

    def open_read(
        self, file: FileEntry, start_offset: int = 0, cancel: threading.Event | None = None
    ) -> DriveDownloadStream:
        """Open a file for reading, starting at ``start_offset``."""
        file = require_file(file)
        if self.session is None:
            raise RuntimeError("No download session configured")
        raise_if_cancelled(cancel)
        return open_media(
            self.session,
            file.file_id,
            start_offset,
            file.size,
            shared_drive=bool(self._shared_drive_id),
            timeout=self._timeout,
        )

    def append(
        self,
        file: FileEntry,
        start_offset: int | None,
        data: BinaryIO,
        cancel: threading.Event | None = None,
    ):
        raise io.UnsupportedOperation("Resuming uploads is not supported by Google Drive")

    def create_file(
        self,
        parent: DirectoryEntry,
        name: str,
        data: BinaryIO,
        cancel: threading.Event | None = None,
    ) -> BackgroundUpload | None:
        """
        Create a file and upload its content.

        Returns:
            A BackgroundUpload that still has to be run when background
            uploads are enabled, otherwise None (content already uploaded).
        """
        parent = require_directory(parent)
        raise_if_cancelled(cancel)
        path = combine_path(parent.path, name)
        body = {"name": name, "parents": [parent.file_id]}
        meta = self._execute(
            f"create_file({path})", self.service.files().create(**self._mutation_kwargs(body=body))
        )
        return self._write_content(path, meta, data, cancel)

    def replace_file(
        self, file: FileEntry, data: BinaryIO, cancel: threading.Event | None = None
    ) -> BackgroundUpload | None:
        """Overwrite the content of an existing file. See create_file."""
        file = require_file(file)
        raise_if_cancelled(cancel)
        meta = {"id": file.file_id, "name": file.name}
        return self._write_content(file.path, meta, data, cancel)

    def set_timestamps(
        self,
        entry: Entry,
        modified_at=None,
        accessed_at=None,
        created_at=None,
        cancel: threading.Event | None = None,
    ) -> Entry:
        """Update the given timestamps and return the entry as Drive now has it."""
        body = {}
        if modified_at is not None:
            body["modifiedTime"] = format_time(modified_at)
        if accessed_at is not None:
            body["viewedByMeTime"] = format_time(accessed_at)
        if created_at is not None:
            body["createdTime"] = format_time(created_at)
        if not isinstance(entry, (DirectoryEntry, FileEntry)):
            raise TypeError(f"Not a filesystem entry: {entry!r}")
        if not body:
            return entry
        raise_if_cancelled(cancel)

        meta = self._execute(
            f"set_timestamps({entry.path})",
            self.service.files().update(**self._mutation_kwargs(fileId=entry.file_id, body=body)),
        )
        if isinstance(entry, DirectoryEntry) and entry.is_root:
            path = "/"
        else:
            path = combine_path(parent_path(entry.path), meta.get("name") or entry.name)
        return self._rebuild(entry, meta, path)

    def upload_finished(self, file_id: str) -> None:
        """Completion hook called by every BackgroundUpload."""
        if not self._use_background_upload:
            return
        try:
            self._uploads.unregister(file_id)
        except RegistryClosedError:
            # Filesystem closed while the upload was running
            logger.debug("Upload of %s finished after the filesystem was closed", file_id)

    def _write_content(
        self, path: str, meta: dict, data: BinaryIO, cancel: threading.Event | None
    ) -> BackgroundUpload | None:
        if not self._use_background_upload:
            self._upload_now(path, meta["id"], data, cancel)
            return None

        temp_data = self._temp_data_factory.create(data, _declared_size(data), cancel)
        upload = BackgroundUpload(path, meta, temp_data, self._send, self.upload_finished)
        try:
            self._uploads.register(upload)
        except BaseException:
            temp_data.close()
            raise
        logger.debug("Registered background upload for %s (%s bytes)", path, upload.file_size)
        return upload

    def _upload_now(
        self, path: str, file_id: str, data: BinaryIO, cancel: threading.Event | None
    ) -> None:
        # The media uploader sends a seekable stream from offset 0
        if _declared_size(data) is not None and data.tell() == 0:
            self._send(file_id, data)
        else:
            with self._temp_data_factory.create(data, None, cancel) as temp_data:
                self._send(file_id, temp_data.open_stream())
        logger.debug("Uploaded %s", path)

    def _send(self, file_id: str, stream: BinaryIO, progress=None) -> dict:
        """Upload a seekable stream as the content of ``file_id``."""
        operation = f"upload({file_id})"
        if _declared_size(stream) == 0:
            # Resumable sessions need at least one chunk; truncate with a simple upload
            media = MediaIoBaseUpload(stream, mimetype=UPLOAD_MIME, resumable=False)
            response = self._execute(
                operation,
                self.service.files().update(**self._mutation_kwargs(fileId=file_id, media_body=media)),
            )
            if progress is not None:
                progress(0)
            return response

        media = MediaIoBaseUpload(
            stream, mimetype=UPLOAD_MIME, chunksize=self._chunk_size, resumable=True
        )
        request = self.service.files().update(
            **self._mutation_kwargs(fileId=file_id, body={}, media_body=media)
        )

        response = None
        while response is None:
            with self._service_lock:
                try:
                    status, response = request.next_chunk(num_retries=self._num_retries)
                except HttpError as e:
                    error = translate_http_error(operation, e)
                    raise UploadError(operation, error.status, error.reason) from e
            if status is not None and progress is not None:
                progress(status.resumable_progress)

        if progress is not None:
            progress(parse_size(response) or 0)
        return response

    def close(self) -> None:
        """Release the transfer registry. Running uploads are left alone."""
        self._uploads.close()
        logger.debug("GoogleDriveFileSystem closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
