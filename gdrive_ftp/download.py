"""
Streamed range downloads from Google Drive.

``MediaIoBaseDownload`` buffers whole chunks and cannot start at an
arbitrary offset, so reads go through an authorized ``requests`` session
with a ``Range`` header and the response body is consumed lazily.
"""

import io
import logging

from .errors import store_error

logger = logging.getLogger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class DriveDownloadStream(io.RawIOBase):
    """
    Read-only stream over a Drive media response.

    ``length`` is the number of bytes the stream will produce when the file
    size is known, else None.
    """

    def __init__(self, response, start_offset: int = 0, size: int | None = None):
        super().__init__()
        self._response = response
        self._chunks = response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE)
        self._pending = b""
        self.start_offset = start_offset
        self.length = max(size - start_offset, 0) if size is not None else None
        self.position = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        self._pending = self._pending[count:]
        self.position += count
        return count

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


def open_media(
    session,
    file_id: str,
    start_offset: int = 0,
    size: int | None = None,
    shared_drive: bool = False,
    timeout: float | None = None,
) -> DriveDownloadStream:
    """
    Start downloading a file's content.

    The response status is checked before the stream is returned, so a
    rejected request never hands partial data to the caller.

    Args:
        session: A ``google.auth.transport.requests.AuthorizedSession``.
        file_id: Drive file ID.
        start_offset: First byte to read (0 reads the whole file).
        size: Known file size, used to compute the stream length.
        shared_drive: Add ``supportsAllDrives`` to the request.
        timeout: Socket timeout in seconds.

    Raises:
        StoreError: If Drive answered with a non-success status.
    """
    params = {"alt": "media"}
    if shared_drive:
        params["supportsAllDrives"] = "true"
    headers = {}
    if start_offset:
        headers["Range"] = f"bytes={start_offset}-"

    response = session.get(
        f"{DRIVE_FILES_URL}/{file_id}",
        params=params,
        headers=headers,
        stream=True,
        timeout=timeout,
    )
    if not 200 <= response.status_code < 300:
        status = response.status_code
        reason = response.reason or ""
        response.close()
        logger.debug("Download of %s rejected: HTTP %d %s", file_id, status, reason)
        raise store_error(f"open_read({file_id})", status, reason)

    logger.debug("Download of %s started at offset %d", file_id, start_offset)
    return DriveDownloadStream(response, start_offset, size)
