"""Caller-facing stream objects.

BlobWriter is the sink returned by ``open_write``; it drives the write state
machine and resolves a WriteHandle exactly once. BlobReader is the source
returned by ``open_read``; it pulls bounded chunks from the backend and
optionally limits or decompresses them.
"""

from __future__ import annotations

import logging
import threading
import zlib
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from enum import StrEnum
from types import TracebackType
from typing import Final, Protocol

from blobstore.storage.errors import BackendUnavailableError, BlobStoreError
from blobstore.storage.models import BlobKey, WriteResult
from blobstore.storage.pipeline import HashingPipeline

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: Final[int] = 64 * 1024


class WriteState(StrEnum):
    """Lifecycle of a single write."""

    INITIALIZING = "initializing"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


class WriteHandle:
    """Single-resolution result of a write.

    Resolves exactly once, with a WriteResult or an error, when the writer is
    committed or aborted.
    """

    def __init__(self, key: BlobKey) -> None:
        self.key = key
        self._future: Future[WriteResult] = Future()
        self._lock = threading.Lock()
        self._state = WriteState.INITIALIZING

    @property
    def state(self) -> WriteState:
        """Return the current lifecycle state."""
        return self._state

    def _advance(self, state: WriteState) -> None:
        with self._lock:
            if self._state in (WriteState.COMPLETE, WriteState.FAILED):
                raise ValueError(f"write for {self.key.path} already {self._state}")
            self._state = state

    def _resolve(self, result: WriteResult) -> None:
        self._advance(WriteState.COMPLETE)
        self._future.set_result(result)

    def _fail(self, error: BaseException) -> bool:
        """Resolve with an error. Return False if the handle was already resolved."""
        with self._lock:
            if self._state in (WriteState.COMPLETE, WriteState.FAILED):
                return False
            self._state = WriteState.FAILED
        self._future.set_exception(error)
        return True

    def done(self) -> bool:
        """Return True once the handle has resolved."""
        return self._future.done()

    def result(self, timeout: float | None = None) -> WriteResult:
        """Wait for and return the WriteResult, or raise the write's error."""
        return self._future.result(timeout)

    def exception(self, timeout: float | None = None) -> BaseException | None:
        """Wait for resolution and return the error, or None on success."""
        return self._future.exception(timeout)

    def add_done_callback(self, fn: Callable[[WriteHandle], object]) -> None:
        """Call ``fn(handle)`` once the handle resolves."""
        self._future.add_done_callback(lambda _future: fn(self))


class BlobWriter:
    """Writable sink for one blob.

    Bytes handed to ``write`` go through the hashing pipeline before
    ``write`` returns. ``close`` commits; ``abort`` discards. Used as a
    context manager, the writer commits on normal exit and aborts on error.
    """

    def __init__(
        self,
        key: BlobKey,
        pipeline: HashingPipeline,
        handle: WriteHandle,
        *,
        storage_key: str,
    ) -> None:
        self.key = key
        self._pipeline = pipeline
        self._handle = handle
        self._storage_key = storage_key
        handle._advance(WriteState.STREAMING)

    @property
    def handle(self) -> WriteHandle:
        return self._handle

    @property
    def state(self) -> WriteState:
        return self._handle.state

    @property
    def closed(self) -> bool:
        return self._handle.state != WriteState.STREAMING

    def writable(self) -> bool:
        return not self.closed

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Push bytes through the pipeline. Return the number of bytes accepted."""
        if self.closed:
            raise ValueError(f"write to {self.state} blob writer")
        chunk = bytes(data)
        try:
            self._pipeline.write(chunk)
        except Exception as e:
            error = self._wrap(e, "write failed")
            self._fail(error)
            raise error from e
        return len(chunk)

    def close(self) -> WriteResult:
        """Commit the write and return its result.

        Calling close on an already committed writer returns the same result.
        """
        if self.state == WriteState.COMPLETE:
            return self._handle.result()
        if self.closed:
            raise ValueError(f"close of {self.state} blob writer")
        self._handle._advance(WriteState.FINALIZING)
        try:
            self._pipeline.finish()
        except Exception as e:
            error = self._wrap(e, "commit failed")
            self._fail(error)
            raise error from e
        result = WriteResult(
            storage_key=self._storage_key,
            size=self._pipeline.raw.size,
            checksum=self._pipeline.raw.checksum,
            compressed=self._pipeline.compressed_info,
        )
        self._handle._resolve(result)
        logger.debug(
            "Committed blob: key=%s size=%d compressed=%s",
            self.key.path,
            result.size,
            result.compressed is not None,
        )
        return result

    def abort(self, error: BaseException | None = None) -> None:
        """Discard the write. The handle resolves with ``error`` (or a default one)."""
        if self.closed:
            return
        self._fail(error or BlobStoreError("write aborted", key=self.key))

    def _wrap(self, error: Exception, message: str) -> BlobStoreError:
        if isinstance(error, BlobStoreError):
            return error
        return BackendUnavailableError(f"{message}: {error}", key=self.key, cause=error)

    def _fail(self, error: BaseException) -> None:
        try:
            self._pipeline.abort()
        except Exception as e:
            logger.warning("Failed to discard partial write for %s: %s", self.key.path, e)
        self._handle._fail(error)

    def __enter__(self) -> BlobWriter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None:
            self.abort(exc)
        elif not self.closed:
            self.close()


class ByteSource(Protocol):
    """Raw bytes provider behind a BlobReader (an open file, an HTTP body)."""

    def read(self, size: int) -> bytes: ...

    def close(self) -> None: ...


class BlobReader:
    """Readable source for one blob.

    Args:
        key: Key being read (for error reporting).
        source: Raw byte provider, already positioned at the first byte.
        limit: Maximum number of raw bytes to pull from ``source``.
        decompressor: zlib decompression object applied to the raw bytes.
        chunk_size: Raw read size per refill.
    """

    def __init__(
        self,
        key: BlobKey,
        source: ByteSource,
        *,
        limit: int | None = None,
        decompressor: zlib._Decompress | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.key = key
        self._source = source
        self._remaining = limit
        self._decompressor = decompressor
        self._chunk_size = chunk_size
        self._buffer = bytearray()
        self._eof = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def readable(self) -> bool:
        return not self._closed

    def _read_raw(self, size: int) -> bytes:
        if self._remaining is not None:
            size = min(size, self._remaining)
            if size <= 0:
                return b""
        try:
            data = self._source.read(size)
        except BlobStoreError:
            raise
        except Exception as e:
            raise BackendUnavailableError(f"read failed: {e}", key=self.key, cause=e) from e
        if self._remaining is not None:
            self._remaining -= len(data)
        return data

    def _fill(self, want: int) -> None:
        if self._decompressor is None:
            data = self._read_raw(max(want, self._chunk_size))
            if data:
                self._buffer += data
            else:
                self._eof = True
            return

        pending = self._decompressor.unconsumed_tail
        try:
            if not pending:
                pending = self._read_raw(self._chunk_size)
                if not pending:
                    self._buffer += self._decompressor.flush()
                    if not self._decompressor.eof:
                        raise BackendUnavailableError(
                            "truncated compressed content", key=self.key
                        )
                    self._eof = True
                    return
            self._buffer += self._decompressor.decompress(pending, max(want, self._chunk_size))
        except zlib.error as e:
            raise BackendUnavailableError(
                f"corrupt compressed content: {e}", key=self.key, cause=e
            ) from e

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes; read to the end when ``size`` is negative."""
        if self._closed:
            raise ValueError("read from closed blob reader")
        if size is None or size < 0:
            while not self._eof:
                self._fill(self._chunk_size)
            data = bytes(self._buffer)
            self._buffer.clear()
            return data
        while len(self._buffer) < size and not self._eof:
            self._fill(size - len(self._buffer))
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        """Yield the content in chunks of at most ``chunk_size`` bytes."""
        while True:
            chunk = self.read(chunk_size)
            if not chunk:
                return
            yield chunk

    def __iter__(self) -> Iterator[bytes]:
        return self.iter_chunks(self._chunk_size)

    def close(self) -> None:
        """Release the underlying file handle or connection.

        Safe to call before the content is exhausted and more than once.
        """
        if self._closed:
            return
        self._closed = True
        self._buffer.clear()
        try:
            self._source.close()
        except Exception as e:
            logger.debug("Ignoring error while closing reader for %s: %s", self.key.path, e)

    def __enter__(self) -> BlobReader:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
