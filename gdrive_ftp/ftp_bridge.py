"""
pyftpdlib integration.

pyftpdlib talks to storage through an AbstractedFS with path-based, os-like
methods. DriveFS implements them on top of GoogleDriveFileSystem: FTP paths
are resolved one segment at a time with find_child_by_name, and resolved
entries are kept in a short-lived per-session cache.

Each FTP session runs on its own thread (ThreadedFTPServer) with its own
DriveFS instance; the GoogleDriveFileSystem and the upload worker are shared.
"""

import errno
import functools
import io
import logging
import os
import posixpath
import stat
import tempfile
import threading
import zlib
from datetime import datetime, timezone

from cachetools import TTLCache
from pyftpdlib.authorizers import DummyAuthorizer
from pyftpdlib.filesystems import AbstractedFS, FilesystemError
from pyftpdlib.handlers import DTPHandler, FTPHandler
from pyftpdlib.servers import ThreadedFTPServer

from .config import AppConfig, CacheConfig, UploadConfig
from .entries import DirectoryEntry, Entry, FileEntry, parent_path
from .filesystem import GoogleDriveFileSystem
from .transfers import BackgroundTransferWorker

logger = logging.getLogger(__name__)

DIR_MODE = stat.S_IFDIR | 0o755
FILE_MODE = stat.S_IFREG | 0o644


def _timestamp(value: datetime | None) -> float:
    return value.timestamp() if value is not None else 0.0


def entry_stat(entry: Entry) -> os.stat_result:
    """Build an os.stat_result for pyftpdlib's LIST/MLSD formatting."""
    inode = zlib.crc32(entry.file_id.encode("utf-8"))
    mtime = _timestamp(entry.modified_at)
    atime = _timestamp(entry.accessed_at) or mtime
    ctime = _timestamp(entry.created_at) or mtime
    if isinstance(entry, DirectoryEntry):
        mode, size = DIR_MODE, 0
    else:
        mode, size = FILE_MODE, entry.size or 0
    return os.stat_result((mode, inode, 0, 1, 0, 0, size, atime, mtime, ctime))


def ftp_errors(method):
    """
    Re-raise errno-less OSErrors as FilesystemError.

    pyftpdlib formats OSError replies with os.strerror(errno), which fails for
    Drive errors; FilesystemError is replied with its message instead.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except OSError as e:
            if e.errno is not None:
                raise
            raise FilesystemError(str(e)) from e

    return wrapper


class DriveReader(io.RawIOBase):
    """
    Lazy download handle returned by ``DriveFS.open(path, "rb")``.

    The download starts on the first read, so a ``seek`` issued before that
    (FTP REST) becomes the range start instead of skipping bytes locally.
    """

    def __init__(self, drive: GoogleDriveFileSystem, entry: FileEntry, name: str):
        super().__init__()
        self.name = name
        self._drive = drive
        self._entry = entry
        self._offset = 0
        self._stream = None

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return self._stream is None

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if self._stream is not None:
            raise io.UnsupportedOperation("Cannot seek after the download started")
        if whence != io.SEEK_SET or offset < 0:
            raise io.UnsupportedOperation("Only absolute seeks are supported")
        self._offset = offset
        return offset

    def tell(self) -> int:
        if self._stream is None:
            return self._offset
        return self._offset + self._stream.position

    def readinto(self, buffer) -> int:
        if self._stream is None:
            self._stream = self._drive.open_read(self._entry, self._offset)
        return self._stream.readinto(buffer)

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
        super().close()


class DriveWriter:
    """
    Upload handle returned by ``DriveFS.open(path, "wb")``.

    Data received on the FTP data connection is spooled locally; ``commit``
    hands it to the Drive filesystem and schedules any background upload.
    ``close`` without a commit discards the spooled data.
    """

    def __init__(self, fs: "DriveFS", path: str, parent: DirectoryEntry, existing: FileEntry | None):
        self.name = path
        self._fs = fs
        self._parent = parent
        self._existing = existing
        self._spool = tempfile.SpooledTemporaryFile(
            max_size=fs.upload_config.spool_memory_bytes,
            mode="w+b",
            dir=fs.upload_config.temp_dir,
        )

    @property
    def closed(self) -> bool:
        return self._spool.closed

    def write(self, data: bytes) -> int:
        return self._spool.write(data)

    def commit(self) -> None:
        """Store the received data on Drive. Errors propagate to the caller."""
        try:
            self._spool.seek(0)
            self._fs._commit_upload(self.name, self._parent, self._existing, self._spool)
        finally:
            self._spool.close()

    def close(self) -> None:
        if self.closed:
            return
        logger.debug("Discarding upload of %s", self.name)
        self._spool.close()


class DriveFS(AbstractedFS):
    """
    AbstractedFS backed by Google Drive.

    FTP paths and "filesystem" paths are the same absolute, slash-separated
    strings; the local root passed in by pyftpdlib is ignored.
    """

    drive: GoogleDriveFileSystem = None
    worker: BackgroundTransferWorker | None = None
    cache_config: CacheConfig = CacheConfig()
    upload_config: UploadConfig = UploadConfig()

    def __init__(self, root, cmd_channel):
        super().__init__(root, cmd_channel)
        self._cache_lock = threading.Lock()
        self._cache = None
        if self.cache_config.enabled:
            self._cache = TTLCache(
                maxsize=self.cache_config.max_entries, ttl=self.cache_config.entry_ttl_seconds
            )

    # --- path mapping -------------------------------------------------------

    def ftp2fs(self, ftppath):
        return self.ftpnorm(ftppath)

    def fs2ftp(self, fspath):
        return self.ftpnorm(fspath)

    def validpath(self, path):
        return True

    def realpath(self, path):
        return self.ftpnorm(path)

    # --- entry cache --------------------------------------------------------

    def _cache_get(self, path: str) -> Entry | None:
        if self._cache is None:
            return None
        with self._cache_lock:
            return self._cache.get(path)

    def _cache_put(self, entry: Entry) -> None:
        if self._cache is None:
            return
        with self._cache_lock:
            self._cache[entry.path] = entry

    def _invalidate(self, path: str) -> None:
        """Drop a path and everything below it from the cache."""
        if self._cache is None:
            return
        prefix = path.rstrip("/") + "/"
        with self._cache_lock:
            for key in [k for k in self._cache.keys() if k == path or k.startswith(prefix)]:
                self._cache.pop(key, None)

    # --- resolution ---------------------------------------------------------

    def _lookup(self, path: str) -> Entry | None:
        path = self.ftpnorm(path)
        if path == "/":
            return self.drive.root
        cached = self._cache_get(path)
        if cached is not None:
            return cached
        parent = self._lookup(parent_path(path))
        if not isinstance(parent, DirectoryEntry):
            return None
        entry = self.drive.find_child_by_name(parent, posixpath.basename(path))
        if entry is not None:
            self._cache_put(entry)
        return entry

    def _resolve(self, path: str) -> Entry:
        entry = self._lookup(path)
        if entry is None:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        return entry

    def _resolve_dir(self, path: str) -> DirectoryEntry:
        entry = self._resolve(path)
        if not isinstance(entry, DirectoryEntry):
            raise NotADirectoryError(errno.ENOTDIR, "Not a directory", path)
        return entry

    def _resolve_file(self, path: str) -> FileEntry:
        entry = self._resolve(path)
        if not isinstance(entry, FileEntry):
            raise IsADirectoryError(errno.EISDIR, "Is a directory", path)
        return entry

    # --- AbstractedFS operations ---------------------------------------------

    @ftp_errors
    def chdir(self, path):
        self.cwd = self._resolve_dir(path).path

    @ftp_errors
    def listdir(self, path):
        directory = self._resolve_dir(path)
        entries = self.drive.list_children(directory)
        for entry in entries:
            self._cache_put(entry)
        return [entry.name for entry in entries]

    def listdirinfo(self, path):
        return self.listdir(path)

    @ftp_errors
    def mkdir(self, path):
        path = self.ftpnorm(path)
        parent = self._resolve_dir(parent_path(path))
        entry = self.drive.create_directory(parent, posixpath.basename(path))
        self._cache_put(entry)

    @ftp_errors
    def rmdir(self, path):
        entry = self._resolve_dir(path)
        self.drive.delete(entry)
        self._invalidate(entry.path)

    @ftp_errors
    def remove(self, path):
        entry = self._resolve_file(path)
        self.drive.delete(entry)
        self._invalidate(entry.path)

    @ftp_errors
    def rename(self, src, dst):
        src, dst = self.ftpnorm(src), self.ftpnorm(dst)
        entry = self._resolve(src)
        source_parent = self._resolve_dir(parent_path(src))
        target_parent = self._resolve_dir(parent_path(dst))

        # FTP RNTO overwrites an existing file; Drive would keep both
        existing = self._lookup(dst)
        if isinstance(existing, FileEntry) and existing.file_id != entry.file_id:
            self.drive.delete(existing)

        moved = self.drive.move(source_parent, entry, target_parent, posixpath.basename(dst))
        self._invalidate(src)
        self._invalidate(dst)
        self._cache_put(moved)

    @ftp_errors
    def chmod(self, path, mode):
        raise io.UnsupportedOperation("Google Drive has no file modes")

    @ftp_errors
    def stat(self, path):
        return entry_stat(self._resolve(path))

    lstat = stat

    @ftp_errors
    def utime(self, path, timeval):
        entry = self._resolve(path)
        when = datetime.fromtimestamp(timeval, tz=timezone.utc)
        updated = self.drive.set_timestamps(entry, modified_at=when, accessed_at=when)
        self._invalidate(entry.path)
        self._cache_put(updated)

    @ftp_errors
    def readlink(self, path):
        raise io.UnsupportedOperation("Google Drive has no symbolic links")

    def _exists(self, path, kind=None) -> bool:
        try:
            entry = self._lookup(path)
        except OSError as e:
            logger.warning("Lookup of %s failed: %s", path, e)
            return False
        if kind is None:
            return entry is not None
        return isinstance(entry, kind)

    def isfile(self, path):
        return self._exists(path, FileEntry)

    def isdir(self, path):
        return self._exists(path, DirectoryEntry)

    def islink(self, path):
        return False

    def lexists(self, path):
        return self._exists(path)

    @ftp_errors
    def getsize(self, path):
        entry = self._resolve(path)
        if isinstance(entry, FileEntry):
            return entry.size or 0
        return 0

    @ftp_errors
    def getmtime(self, path):
        return _timestamp(self._resolve(path).modified_at)

    @ftp_errors
    def mkstemp(self, suffix="", prefix="", dir=None, mode="wb"):
        raise io.UnsupportedOperation("STOU is not supported")

    @ftp_errors
    def open(self, filename, mode):
        path = self.ftpnorm(filename)
        if "r" in mode and "+" not in mode:
            return DriveReader(self.drive, self._resolve_file(path), path)
        if "a" in mode:
            entry = self._resolve_file(path)
            return self.drive.append(entry, None, None)
        if "+" in mode:
            raise io.UnsupportedOperation("Resuming uploads is not supported by Google Drive")

        parent = self._resolve_dir(parent_path(path))
        existing = self._lookup(path)
        if isinstance(existing, DirectoryEntry):
            raise IsADirectoryError(errno.EISDIR, "Is a directory", path)
        return DriveWriter(self, path, parent, existing)

    def _commit_upload(self, path, parent, existing, data) -> None:
        if existing is None:
            upload = self.drive.create_file(parent, posixpath.basename(path), data)
        else:
            upload = self.drive.replace_file(existing, data)
        self._invalidate(path)
        if upload is None:
            logger.info("Stored %s", path)
        elif self.worker is not None:
            self.worker.submit(upload)
            logger.info("Stored %s, uploading in background", path)
        else:
            upload.run()


class DriveDTPHandler(DTPHandler):
    """
    Data channel that commits uploads before the transfer reply is sent.

    pyftpdlib closes the file object before replying, so a commit failure
    replaces the pending 226 with an error reply.
    """

    def close(self):
        writer = self.file_obj
        if not self._closed and isinstance(writer, DriveWriter) and not writer.closed:
            try:
                writer.commit()
            except (OSError, RuntimeError) as e:
                logger.error("Upload of %s failed: %s", writer.name, e)
                if self._resp:
                    code = "550" if isinstance(e, PermissionError) else "451"
                    self._resp = (f"{code} {e}.", logger.warning)
        super().close()


class DriveFTPHandler(FTPHandler):
    dtp_handler = DriveDTPHandler
    # Drive downloads have no file descriptor
    use_sendfile = False

    def on_incomplete_file_received(self, file):
        logger.warning("Incomplete upload stored for %s", file)


def make_drive_fs_class(
    drive: GoogleDriveFileSystem,
    worker: BackgroundTransferWorker | None,
    cache_config: CacheConfig,
    upload_config: UploadConfig,
) -> type:
    """Bind the shared filesystem and worker to a DriveFS subclass."""
    return type(
        "BoundDriveFS",
        (DriveFS,),
        {
            "drive": drive,
            "worker": worker,
            "cache_config": cache_config,
            "upload_config": upload_config,
        },
    )


def build_server(
    config: AppConfig,
    drive: GoogleDriveFileSystem,
    worker: BackgroundTransferWorker | None,
) -> ThreadedFTPServer:
    """Create a threaded FTP server that serves ``drive``."""
    # pyftpdlib requires an existing local home directory; DriveFS ignores it
    home = config.upload.temp_dir or tempfile.gettempdir()

    authorizer = DummyAuthorizer()
    if config.ftp.username:
        authorizer.add_user(
            config.ftp.username, config.ftp.password or "", home, perm=config.ftp.permissions
        )
    else:
        authorizer.add_anonymous(home)

    handler = type("BoundDriveFTPHandler", (DriveFTPHandler,), {})
    handler.authorizer = authorizer
    handler.abstracted_fs = make_drive_fs_class(drive, worker, config.cache, config.upload)
    handler.banner = config.ftp.banner
    if config.ftp.passive_ports:
        start, end = config.ftp.passive_ports
        handler.passive_ports = list(range(start, end + 1))

    server = ThreadedFTPServer((config.ftp.host, config.ftp.port), handler)
    server.max_cons = config.ftp.max_connections
    logger.info("FTP server listening on %s:%d", config.ftp.host, config.ftp.port)
    return server
