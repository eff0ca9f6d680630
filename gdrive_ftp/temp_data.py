"""
Staging storage for uploads that finish in the background.

The FTP data connection has to be drained before the client gets its reply,
but the Drive upload may take much longer. Uploaded bytes are therefore
copied into a spooled temporary file first (memory for small files, disk
for large ones) and pushed to Drive from there.
"""

import logging
import shutil
import tempfile
import threading
from typing import BinaryIO

from .gdrive_query import raise_if_cancelled

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 64 * 1024


class TemporaryData:
    """A seekable, reusable copy of an uploaded byte stream."""

    def __init__(self, spool: tempfile.SpooledTemporaryFile, expected_size: int | None = None):
        self._spool = spool
        self.expected_size = expected_size
        self._size: int | None = None

    @property
    def size(self) -> int | None:
        """Best known size: the staged byte count, else the declared size."""
        if self._size is not None:
            return self._size
        return self.expected_size

    @property
    def closed(self) -> bool:
        return self._spool.closed

    def _finish_staging(self) -> None:
        self._size = self._spool.tell()
        self._spool.seek(0)
        if self.expected_size is not None and self.expected_size != self._size:
            logger.warning(
                "Staged %d bytes but %d were declared", self._size, self.expected_size
            )

    def open_stream(self) -> BinaryIO:
        """Return the staged data rewound to the start."""
        self._spool.seek(0)
        return self._spool

    def close(self) -> None:
        self._spool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"TemporaryData(size={self.size!r})"


class TemporaryDataFactory:
    """
    Creates TemporaryData objects.

    Data up to ``max_memory_bytes`` stays in memory; larger uploads roll over
    to a temporary file in ``directory`` (system default when None).
    """

    def __init__(self, max_memory_bytes: int = 8 * 1024 * 1024, directory: str | None = None):
        self.max_memory_bytes = max_memory_bytes
        self.directory = directory

    def create(
        self,
        source: BinaryIO,
        expected_size: int | None = None,
        cancel: threading.Event | None = None,
    ) -> TemporaryData:
        spool = tempfile.SpooledTemporaryFile(
            max_size=self.max_memory_bytes, mode="w+b", dir=self.directory
        )
        data = TemporaryData(spool, expected_size)
        try:
            if cancel is None:
                shutil.copyfileobj(source, spool, COPY_BUFFER_SIZE)
            else:
                while True:
                    raise_if_cancelled(cancel)
                    chunk = source.read(COPY_BUFFER_SIZE)
                    if not chunk:
                        break
                    spool.write(chunk)
            data._finish_staging()
        except BaseException:
            data.close()
            raise

        logger.debug("Staged upload data: %d bytes", data.size)
        return data
