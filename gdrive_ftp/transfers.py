"""
Background uploads and the registry that tracks them.

When background uploads are enabled, creating or replacing a file returns
as soon as the data has been staged locally. The upload itself runs on a
BackgroundTransferWorker thread. While it runs, the upload is registered in
the TransferRegistry under its Drive file ID so that directory listings can
report the staged size instead of the (still empty) size Drive knows about.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from types import MappingProxyType
from typing import BinaryIO, Callable, Optional

from .errors import RegistryClosedError, TransferAlreadyRegisteredError
from .temp_data import TemporaryData

logger = logging.getLogger(__name__)

# send(file_id, stream, progress) -> final Drive metadata
UploadSender = Callable[[str, BinaryIO, Optional[Callable[[int], None]]], dict]


class BackgroundUpload:
    """
    One upload that completes after the triggering FTP command returned.

    The target Drive object already exists (metadata only); ``run`` pushes the
    staged bytes into it. ``on_finished`` is called with the file ID exactly
    once, whether the upload succeeded or failed.
    """

    def __init__(
        self,
        path: str,
        metadata: dict,
        temp_data: TemporaryData,
        send: UploadSender,
        on_finished: Callable[[str], None],
    ):
        self.path = path
        self.metadata = metadata
        self.temp_data = temp_data
        self._send = send
        self._on_finished = on_finished
        self._started = False
        self._start_lock = threading.Lock()
        self.transferred = 0
        self.completed: Future = Future()

    @property
    def file_id(self) -> str:
        return self.metadata["id"]

    @property
    def file_size(self) -> int | None:
        """Size shown in listings while the upload is pending."""
        return self.temp_data.size

    @property
    def done(self) -> bool:
        return self.completed.done()

    def _report(self, progress: Callable[[int], None] | None, transferred: int) -> None:
        self.transferred = transferred
        if progress is not None:
            progress(transferred)

    def run(self, progress: Callable[[int], None] | None = None) -> dict:
        """
        Push the staged data to Drive.

        Args:
            progress: Called with the number of bytes sent so far.

        Returns:
            The Drive metadata of the uploaded file.

        Raises:
            RuntimeError: If the upload was already started.
            StoreError: If Drive rejected the upload.
        """
        with self._start_lock:
            if self._started:
                raise RuntimeError(f"Upload already started: {self.path}")
            self._started = True

        logger.debug("Background upload started: %s (%s bytes)", self.path, self.file_size)
        try:
            stream = self.temp_data.open_stream()
            result = self._send(self.file_id, stream, lambda n: self._report(progress, n))
        except BaseException as e:
            self.completed.set_exception(e)
            raise
        else:
            self.completed.set_result(result)
            logger.info("Background upload finished: %s", self.path)
            return result
        finally:
            self.temp_data.close()
            self._on_finished(self.file_id)

    def __repr__(self):
        return f"BackgroundUpload({self.path!r}, id={self.file_id!r})"


class TransferRegistry:
    """
    Map of Drive file ID to the BackgroundUpload writing it.

    A single lock guards the map. It is held only while the map is mutated or
    read, never across a Drive request.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._uploads: dict[str, BackgroundUpload] = {}
        self._closed = False

    def register(self, upload: BackgroundUpload) -> None:
        with self._lock:
            if self._closed:
                raise RegistryClosedError("Transfer registry is closed")
            if upload.file_id in self._uploads:
                raise TransferAlreadyRegisteredError(
                    f"An upload is already registered for {upload.file_id}"
                )
            self._uploads[upload.file_id] = upload

    def unregister(self, file_id: str) -> BackgroundUpload | None:
        with self._lock:
            if self._closed:
                raise RegistryClosedError("Transfer registry is closed")
            return self._uploads.pop(file_id, None)

    @contextmanager
    def locked(self) -> Iterator[Mapping[str, BackgroundUpload]]:
        """Hold the registry lock and yield a read-only view of the uploads."""
        with self._lock:
            yield MappingProxyType(self._uploads)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._uploads.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def __contains__(self, file_id: object) -> bool:
        with self._lock:
            return file_id in self._uploads

    def __len__(self) -> int:
        with self._lock:
            return len(self._uploads)


class BackgroundTransferWorker:
    """
    Runs background uploads on a small thread pool.

    Uploads keep running after the FTP command that started them returned.
    The returned future carries the outcome; failures are also logged.
    """

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="gdrive-upload"
        )
        self._lock = threading.Lock()
        self._pending: set[BackgroundUpload] = set()

    def submit(self, upload: BackgroundUpload) -> Future:
        with self._lock:
            self._pending.add(upload)
        future = self._executor.submit(upload.run)
        future.add_done_callback(lambda f: self._upload_done(upload, f))
        return future

    def _upload_done(self, upload: BackgroundUpload, future: Future) -> None:
        with self._lock:
            self._pending.discard(upload)
        if future.cancelled():
            logger.warning("Background upload cancelled before it started: %s", upload.path)
            return
        error = future.exception()
        if error is not None:
            logger.error("Background upload failed: %s: %s", upload.path, error)

    @property
    def pending(self) -> list[BackgroundUpload]:
        with self._lock:
            return list(self._pending)

    def shutdown(self, wait: bool = True) -> None:
        pending = self.pending
        if pending:
            logger.info("Waiting for %d background upload(s)", len(pending))
        self._executor.shutdown(wait=wait)
