"""
Shared pytest fixtures for gdrive-ftp tests.
"""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from drive_helpers import ROOT_ID, make_folder_meta

from gdrive_ftp.config import CacheConfig, UploadConfig
from gdrive_ftp.filesystem import GoogleDriveFileSystem
from gdrive_ftp.temp_data import TemporaryDataFactory


@pytest.fixture
def tmp_config_file(tmp_path: Path) -> Generator[Path, None, None]:
    """
    Creates a temporary INI configuration file for config tests.

    Returns:
        Path to the temporary config file.
    """
    config_content = """[gdrive]
client_secrets_file = /secrets/client.json
token_file = /secrets/token.json
root_folder_id = abc123
num_retries = 5
shared_drive = Team

[ftp]
host = 0.0.0.0
port = 2222
username = alice
password = secret
permissions = elr
passive_ports = 60000-60010
max_connections = 8

[upload]
background = false
spool_memory_bytes = 1024
temp_dir = /tmp/spool
chunk_size_bytes = 524288
workers = 4

[cache]
enabled = false
entry_ttl_seconds = 10
max_entries = 50

[logging]
level = DEBUG
file = test.log
console = false
"""
    config_path = tmp_path / "test_config.ini"
    config_path.write_text(config_content, encoding="utf-8")
    yield config_path


@pytest.fixture
def mock_drive_service() -> MagicMock:
    """Creates a mocked Google Drive API service."""
    return MagicMock()


@pytest.fixture
def files_api(mock_drive_service) -> MagicMock:
    """The mocked ``service.files()`` resource."""
    return mock_drive_service.files.return_value


@pytest.fixture
def temp_factory(tmp_path: Path) -> TemporaryDataFactory:
    return TemporaryDataFactory(max_memory_bytes=1024, directory=str(tmp_path))


@pytest.fixture
def drive_fs(mock_drive_service, temp_factory) -> Generator[GoogleDriveFileSystem, None, None]:
    """GoogleDriveFileSystem in background-upload mode with a mocked service."""
    fs = GoogleDriveFileSystem(
        mock_drive_service,
        make_folder_meta(ROOT_ID, "My Drive"),
        temp_factory,
        use_background_upload=True,
        session=MagicMock(),
    )
    yield fs
    fs.close()


@pytest.fixture
def sync_drive_fs(mock_drive_service, temp_factory) -> Generator[GoogleDriveFileSystem, None, None]:
    """GoogleDriveFileSystem that uploads before returning."""
    fs = GoogleDriveFileSystem(
        mock_drive_service,
        make_folder_meta(ROOT_ID, "My Drive"),
        temp_factory,
        use_background_upload=False,
        session=MagicMock(),
    )
    yield fs
    fs.close()


@pytest.fixture
def upload_config(tmp_path: Path) -> UploadConfig:
    return UploadConfig(spool_memory_bytes=1024, temp_dir=str(tmp_path))


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(enabled=True, entry_ttl_seconds=30, max_entries=100)
