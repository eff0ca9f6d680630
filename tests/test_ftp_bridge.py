"""
Unit tests for gdrive_ftp.ftp_bridge module.

Tests cover:
- Path resolution segment by segment, with and without the entry cache
- stat results for files and directories
- listdir / mkdir / rmdir / remove / rename / utime
- DriveReader range start from seek
- DriveWriter commit and background upload scheduling
- Error replies for unsupported operations and Drive failures
- build_server wiring
"""

import errno
import io
import stat
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from pyftpdlib.filesystems import FilesystemError

from gdrive_ftp.config import AppConfig, CacheConfig, FTPServerConfig, GoogleDriveConfig, LogConfig, UploadConfig
from gdrive_ftp.entries import DirectoryEntry, FileEntry
from gdrive_ftp.errors import StoreError
from gdrive_ftp.ftp_bridge import (
    DriveDTPHandler,
    DriveReader,
    DriveWriter,
    build_server,
    entry_stat,
    make_drive_fs_class,
)

MTIME = datetime(2024, 6, 15, 10, 30, tzinfo=timezone.utc)

ROOT = DirectoryEntry("root_id", "/", "", is_root=True)
DOCS = DirectoryEntry("docs_id", "/docs", "docs", modified_at=MTIME)
REPORT = FileEntry("report_id", "/docs/report.txt", "report.txt", size=42, modified_at=MTIME)
OLD = FileEntry("old_id", "/docs/old.txt", "old.txt", size=5, modified_at=MTIME)

TREE = {
    ("/", "docs"): DOCS,
    ("/docs", "report.txt"): REPORT,
    ("/docs", "old.txt"): OLD,
}


@pytest.fixture
def drive() -> MagicMock:
    """A mocked GoogleDriveFileSystem holding TREE."""
    drive = MagicMock()
    drive.root = ROOT
    drive.find_child_by_name.side_effect = lambda parent, name: TREE.get((parent.path, name))
    return drive


@pytest.fixture
def worker() -> MagicMock:
    return MagicMock()


@pytest.fixture
def make_fs(drive, worker, cache_config, upload_config):
    """Factory for DriveFS instances bound to the mocked drive."""

    def factory(cache=cache_config, bound_worker=worker):
        fs_class = make_drive_fs_class(drive, bound_worker, cache, upload_config)
        return fs_class("/", MagicMock())

    return factory


@pytest.fixture
def fs(make_fs):
    return make_fs()


class TestEntryStat:
    """Tests for entry_stat."""

    def test_file_stat(self):
        st = entry_stat(REPORT)

        assert stat.S_ISREG(st.st_mode)
        assert st.st_size == 42
        assert st.st_mtime == MTIME.timestamp()
        assert st.st_atime == st.st_mtime

    def test_directory_stat(self):
        st = entry_stat(DOCS)

        assert stat.S_ISDIR(st.st_mode)
        assert st.st_size == 0

    def test_unknown_size_is_zero(self):
        assert entry_stat(FileEntry("f", "/f", "f")).st_size == 0

    def test_inode_stable_per_file_id(self):
        assert entry_stat(REPORT).st_ino == entry_stat(REPORT).st_ino
        assert entry_stat(REPORT).st_ino != entry_stat(OLD).st_ino


class TestResolution:
    """Tests for resolving FTP paths to entries."""

    def test_root_needs_no_lookup(self, fs, drive):
        assert stat.S_ISDIR(fs.stat("/").st_mode)
        drive.find_child_by_name.assert_not_called()

    def test_nested_path_resolved_per_segment(self, fs, drive):
        assert fs.stat("/docs/report.txt").st_size == 42

        names = [c[0][1] for c in drive.find_child_by_name.call_args_list]
        assert names == ["docs", "report.txt"]

    def test_cached_entries_reused(self, fs, drive):
        fs.stat("/docs/report.txt")
        fs.stat("/docs/report.txt")

        assert drive.find_child_by_name.call_count == 2

    def test_cache_disabled(self, make_fs, drive):
        fs = make_fs(cache=CacheConfig(enabled=False))

        fs.stat("/docs/report.txt")
        fs.stat("/docs/report.txt")

        assert drive.find_child_by_name.call_count == 4

    def test_relative_path_uses_cwd(self, fs):
        fs.chdir("/docs")

        assert fs.cwd == "/docs"
        assert fs.getsize("report.txt") == 42

    def test_missing_path(self, fs):
        with pytest.raises(FileNotFoundError) as exc_info:
            fs.stat("/docs/missing.txt")
        assert exc_info.value.errno == errno.ENOENT

    def test_path_below_file(self, fs):
        with pytest.raises(FileNotFoundError):
            fs.stat("/docs/report.txt/child")

    def test_chdir_into_file(self, fs):
        with pytest.raises(NotADirectoryError):
            fs.chdir("/docs/report.txt")

    def test_predicates(self, fs):
        assert fs.isdir("/docs") is True
        assert fs.isfile("/docs/report.txt") is True
        assert fs.isfile("/docs") is False
        assert fs.lexists("/docs/nope") is False
        assert fs.islink("/docs/report.txt") is False

    def test_lookup_failure_reads_as_missing(self, fs, drive):
        drive.find_child_by_name.side_effect = StoreError("find", 500)

        assert fs.isfile("/docs/report.txt") is False

    def test_getmtime(self, fs):
        assert fs.getmtime("/docs/report.txt") == MTIME.timestamp()


class TestDirectoryOperations:
    """Tests for listdir, mkdir, rmdir, remove, rename and utime."""

    def test_listdir_returns_names_and_caches(self, fs, drive):
        drive.list_children.return_value = [REPORT, OLD]

        assert fs.listdir("/docs") == ["report.txt", "old.txt"]
        drive.list_children.assert_called_once_with(DOCS)

        drive.find_child_by_name.reset_mock()
        fs.stat("/docs/old.txt")
        drive.find_child_by_name.assert_not_called()

    def test_listdir_store_error_becomes_filesystem_error(self, fs, drive):
        drive.list_children.side_effect = StoreError("list_children(/docs)", 500, "Backend Error")

        with pytest.raises(FilesystemError, match="HTTP 500"):
            fs.listdir("/docs")

    def test_mkdir(self, fs, drive):
        new_dir = DirectoryEntry("new_id", "/docs/new", "new")
        drive.create_directory.return_value = new_dir

        fs.mkdir("/docs/new")

        drive.create_directory.assert_called_once_with(DOCS, "new")
        assert fs.isdir("/docs/new") is True

    def test_rmdir(self, fs, drive):
        fs.rmdir("/docs")

        drive.delete.assert_called_once_with(DOCS)

    def test_remove_invalidates_cache(self, fs, drive):
        fs.stat("/docs/report.txt")
        fs.remove("/docs/report.txt")

        drive.delete.assert_called_once_with(REPORT)
        drive.find_child_by_name.reset_mock()
        fs.stat("/docs/report.txt")
        assert drive.find_child_by_name.call_count == 1

    def test_remove_directory_rejected(self, fs, drive):
        with pytest.raises(IsADirectoryError):
            fs.remove("/docs")
        drive.delete.assert_not_called()

    def test_rename_in_same_directory(self, fs, drive):
        moved = FileEntry("report_id", "/docs/final.txt", "final.txt", size=42)
        drive.move.return_value = moved

        fs.rename("/docs/report.txt", "/docs/final.txt")

        drive.move.assert_called_once_with(DOCS, REPORT, DOCS, "final.txt")
        drive.delete.assert_not_called()

    def test_rename_replaces_existing_file(self, fs, drive):
        drive.move.return_value = FileEntry("report_id", "/docs/old.txt", "old.txt")

        fs.rename("/docs/report.txt", "/docs/old.txt")

        drive.delete.assert_called_once_with(OLD)
        drive.move.assert_called_once_with(DOCS, REPORT, DOCS, "old.txt")

    def test_rename_into_root(self, fs, drive):
        drive.move.return_value = FileEntry("report_id", "/report.txt", "report.txt")

        fs.rename("/docs/report.txt", "/report.txt")

        drive.move.assert_called_once_with(DOCS, REPORT, ROOT, "report.txt")

    def test_utime(self, fs, drive):
        drive.set_timestamps.return_value = REPORT
        when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        fs.utime("/docs/report.txt", when.timestamp())

        drive.set_timestamps.assert_called_once_with(REPORT, modified_at=when, accessed_at=when)

    def test_chmod_unsupported(self, fs):
        with pytest.raises(FilesystemError):
            fs.chmod("/docs/report.txt", 0o644)

    def test_readlink_unsupported(self, fs):
        with pytest.raises(FilesystemError):
            fs.readlink("/docs/report.txt")


class TestOpenForReading:
    """Tests for DriveFS.open in read mode and DriveReader."""

    def test_open_returns_lazy_reader(self, fs, drive):
        reader = fs.open("/docs/report.txt", "rb")

        assert isinstance(reader, DriveReader)
        assert reader.name == "/docs/report.txt"
        drive.open_read.assert_not_called()

    def test_read_starts_at_zero(self, fs, drive):
        drive.open_read.return_value = io.BytesIO(b"hello")

        reader = fs.open("/docs/report.txt", "rb")

        assert reader.read(5) == b"hello"
        drive.open_read.assert_called_once_with(REPORT, 0)

    def test_seek_before_read_sets_range_start(self, fs, drive):
        stream = MagicMock()
        stream.readinto.return_value = 0
        drive.open_read.return_value = stream
        reader = fs.open("/docs/report.txt", "rb")

        reader.seek(10)
        reader.read(4)

        drive.open_read.assert_called_once_with(REPORT, 10)
        assert reader.seekable() is False
        with pytest.raises(io.UnsupportedOperation):
            reader.seek(0)

    def test_close_closes_download(self, fs, drive):
        stream = MagicMock()
        stream.readinto.return_value = 0
        drive.open_read.return_value = stream
        reader = fs.open("/docs/report.txt", "rb")
        reader.read(1)

        reader.close()

        stream.close.assert_called_once()

    def test_open_directory_for_reading(self, fs):
        with pytest.raises(IsADirectoryError):
            fs.open("/docs", "rb")

    def test_append_rejected(self, fs, drive):
        drive.append.side_effect = io.UnsupportedOperation("Resuming uploads is not supported")

        with pytest.raises(FilesystemError, match="not supported"):
            fs.open("/docs/report.txt", "ab")

    def test_resume_rejected(self, fs, drive):
        with pytest.raises(FilesystemError):
            fs.open("/docs/report.txt", "r+b")
        drive.open_read.assert_not_called()


class TestOpenForWriting:
    """Tests for DriveFS.open in write mode and DriveWriter."""

    def test_new_file_created_on_commit(self, fs, drive, worker):
        received = []
        upload = MagicMock()
        drive.create_file.side_effect = lambda parent, name, data: received.append(
            (parent, name, data.read())
        ) or upload

        writer = fs.open("/docs/new.txt", "wb")
        assert isinstance(writer, DriveWriter)
        writer.write(b"part one, ")
        writer.write(b"part two")
        drive.create_file.assert_not_called()
        writer.commit()

        assert received == [(DOCS, "new.txt", b"part one, part two")]
        worker.submit.assert_called_once_with(upload)
        assert writer.closed

    def test_existing_file_replaced(self, fs, drive, worker):
        drive.replace_file.return_value = MagicMock()

        writer = fs.open("/docs/report.txt", "wb")
        writer.write(b"new content")
        writer.commit()

        assert drive.replace_file.call_args[0][0] is REPORT
        drive.create_file.assert_not_called()

    def test_synchronous_upload_not_submitted(self, fs, drive, worker):
        drive.create_file.return_value = None

        writer = fs.open("/docs/new.txt", "wb")
        writer.commit()

        worker.submit.assert_not_called()

    def test_upload_runs_inline_without_worker(self, make_fs, drive):
        upload = MagicMock()
        drive.create_file.return_value = upload
        fs = make_fs(bound_worker=None)

        writer = fs.open("/docs/new.txt", "wb")
        writer.commit()

        upload.run.assert_called_once_with()

    def test_commit_failure_propagates(self, fs, drive, worker):
        drive.create_file.side_effect = StoreError("create_file(/docs/new.txt)", 403)

        writer = fs.open("/docs/new.txt", "wb")
        with pytest.raises(StoreError):
            writer.commit()

        worker.submit.assert_not_called()
        assert writer.closed

    def test_close_without_commit_discards(self, fs, drive):
        """Test pyftpdlib's error paths that only close the file store nothing."""
        writer = fs.open("/docs/new.txt", "wb")
        writer.write(b"partial")
        writer.close()
        writer.close()

        drive.create_file.assert_not_called()
        drive.replace_file.assert_not_called()
        assert writer.closed

    def test_write_over_directory_rejected(self, fs):
        with pytest.raises(IsADirectoryError):
            fs.open("/docs", "wb")

    def test_write_into_missing_directory(self, fs):
        with pytest.raises(FileNotFoundError):
            fs.open("/nowhere/new.txt", "wb")

    def test_stou_unsupported(self, fs):
        with pytest.raises(FilesystemError):
            fs.mkstemp()


class TestBuildServer:
    """Tests for build_server."""

    def _config(self, tmp_path, **ftp):
        return AppConfig(
            gdrive=GoogleDriveConfig(),
            ftp=FTPServerConfig(**ftp),
            upload=UploadConfig(temp_dir=str(tmp_path)),
            cache=CacheConfig(),
            logging=LogConfig(),
        )

    @patch("gdrive_ftp.ftp_bridge.ThreadedFTPServer")
    def test_authenticated_server(self, mock_server_class, tmp_path, drive, worker):
        config = self._config(
            tmp_path,
            host="0.0.0.0",
            port=2121,
            username="alice",
            password="secret",
            passive_ports=(60000, 60002),
            max_connections=5,
        )

        server = build_server(config, drive, worker)

        (address, handler), _ = mock_server_class.call_args
        assert address == ("0.0.0.0", 2121)
        assert handler.authorizer.has_user("alice")
        assert handler.passive_ports == [60000, 60001, 60002]
        assert handler.banner == config.ftp.banner
        assert handler.use_sendfile is False
        assert handler.dtp_handler is DriveDTPHandler
        assert handler.abstracted_fs.drive is drive
        assert handler.abstracted_fs.worker is worker
        assert server.max_cons == 5

    @patch("gdrive_ftp.ftp_bridge.ThreadedFTPServer")
    def test_anonymous_server(self, mock_server_class, tmp_path, drive):
        build_server(self._config(tmp_path), drive, None)

        handler = mock_server_class.call_args[0][1]
        assert handler.authorizer.has_user("anonymous")
        assert handler.abstracted_fs.worker is None
