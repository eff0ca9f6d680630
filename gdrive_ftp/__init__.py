__version__ = "0.1.0"

# Public API exports
from .config import (
    AppConfig,
    CacheConfig,
    FTPServerConfig,
    GoogleDriveConfig,
    LogConfig,
    UploadConfig,
    load_config,
)
from .entries import DirectoryEntry, Entry, FileEntry
from .errors import (
    RegistryClosedError,
    StoreError,
    StoreNotFoundError,
    StorePermissionError,
    TransferAlreadyRegisteredError,
    UploadError,
)
from .filesystem import GoogleDriveFileSystem
from .temp_data import TemporaryData, TemporaryDataFactory
from .transfers import BackgroundTransferWorker, BackgroundUpload, TransferRegistry

__all__ = [
    "__version__",
    # Configuration
    "AppConfig",
    "GoogleDriveConfig",
    "FTPServerConfig",
    "UploadConfig",
    "CacheConfig",
    "LogConfig",
    "load_config",
    # Entries
    "Entry",
    "DirectoryEntry",
    "FileEntry",
    # Errors
    "StoreError",
    "StoreNotFoundError",
    "StorePermissionError",
    "UploadError",
    "TransferAlreadyRegisteredError",
    "RegistryClosedError",
    # Filesystem and transfers
    "GoogleDriveFileSystem",
    "TemporaryData",
    "TemporaryDataFactory",
    "BackgroundUpload",
    "TransferRegistry",
    "BackgroundTransferWorker",
]
