"""
Error types raised by the Google Drive filesystem.

Drive API failures are translated into ``OSError`` subclasses so that the
FTP layer can turn them into protocol replies without knowing about
``googleapiclient``.
"""

from __future__ import annotations

from googleapiclient.errors import HttpError


class StoreError(OSError):
    """The Drive API rejected a request with a non-success status."""

    def __init__(self, operation: str, status: int | None = None, reason: str = ""):
        self.operation = operation
        self.status = status
        self.reason = reason
        detail = f"HTTP {status}" if status is not None else "request failed"
        if reason:
            detail = f"{detail} {reason}"
        super().__init__(f"{operation} failed: {detail}")


class StoreNotFoundError(StoreError, FileNotFoundError):
    """The Drive API returned 404 for the requested object."""


class StorePermissionError(StoreError, PermissionError):
    """The Drive API returned 403 for the requested object."""


class UploadError(StoreError):
    """Uploading file content to Drive failed."""


class TransferAlreadyRegisteredError(RuntimeError):
    """A second background upload was registered for the same file ID."""


class RegistryClosedError(RuntimeError):
    """The transfer registry was used after the filesystem was closed."""


def store_error(operation: str, status: int | None, reason: str = "") -> StoreError:
    """Build the most specific StoreError for an HTTP status."""
    if status == 404:
        return StoreNotFoundError(operation, status, reason)
    if status == 403:
        return StorePermissionError(operation, status, reason)
    return StoreError(operation, status, reason)


def translate_http_error(operation: str, error: HttpError) -> StoreError:
    """Convert a googleapiclient HttpError into a StoreError."""
    status = getattr(error.resp, "status", None)
    try:
        status = int(status) if status is not None else None
    except (TypeError, ValueError):
        status = None
    reason = getattr(error.resp, "reason", "") or ""
    return store_error(operation, status, str(reason))
