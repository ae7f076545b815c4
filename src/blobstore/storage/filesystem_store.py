"""Filesystem blob backend.

Stores each blob as a file in a three-level directory tree:
    {root}/{graph_id}/{resource_id}/{encoding_id}

Writes stream into a hidden temporary file next to the destination and are
atomically renamed into place on commit, so readers never observe a partly
written or partly compressed object. Compression is detected on read by
sniffing the gzip magic number; there is no side-channel metadata.

Environment Variables:
    BLOBSTORE_FS_ROOT: Root directory for storage (default: ./blobs)
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
import zlib
from pathlib import Path
from typing import BinaryIO, Final

from blobstore.storage.backend import BlobBackend
from blobstore.storage.directory_cache import (
    DEFAULT_DIRECTORY_CACHE_CAPACITY,
    DirectoryExistenceCache,
)
from blobstore.storage.errors import (
    BackendUnavailableError,
    BlobNotFoundError,
    InvalidKeyError,
    PartialFailureError,
    UnsupportedCombinationError,
)
from blobstore.storage.models import (
    BlobKey,
    ReadOptions,
    RemovedEntry,
    WriteOptions,
)
from blobstore.storage.pipeline import HashingPipeline, should_compress
from blobstore.storage.streams import (
    DEFAULT_CHUNK_SIZE,
    BlobReader,
    BlobWriter,
    WriteHandle,
)
from blobstore.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

BLOBSTORE_FS_ROOT_ENV: Final[str] = "BLOBSTORE_FS_ROOT"

GZIP_MAGIC: Final[bytes] = b"\x1f\x8b"

_TMP_PREFIX: Final[str] = "."
_TMP_SUFFIX: Final[str] = ".tmp"


def _is_temporary(name: str) -> bool:
    return name.startswith(_TMP_PREFIX) and name.endswith(_TMP_SUFFIX)


class _FileDestination:
    """Pipeline destination writing to a temporary file renamed on commit."""

    def __init__(self, fileobj: BinaryIO, tmp_path: Path, final_path: Path) -> None:
        self._file = fileobj
        self._tmp_path = tmp_path
        self._final_path = final_path

    def write(self, data: bytes) -> None:
        self._file.write(data)

    def commit(self) -> None:
        self._file.flush()
        os.fsync(self._file.fileno())
        self._file.close()
        self._tmp_path.replace(self._final_path)

    def abort(self) -> None:
        self._file.close()
        self._tmp_path.unlink(missing_ok=True)


class FilesystemBlobBackend(BlobBackend):
    """Filesystem-based blob storage implementation.

    The directory-existence cache is owned by the instance: two backends on
    the same root do not share it.
    """

    def __init__(
        self,
        root_directory: str | Path | None = None,
        *,
        directory_cache_capacity: int = DEFAULT_DIRECTORY_CACHE_CAPACITY,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize filesystem storage.

        Args:
            root_directory: Root of the blob tree. If None, uses the
                BLOBSTORE_FS_ROOT env var or ./blobs.
            directory_cache_capacity: Number of directories remembered as existing.
            chunk_size: Read size used by readers.
        """
        if root_directory is None:
            root_directory = os.environ.get(BLOBSTORE_FS_ROOT_ENV) or Path.cwd() / "blobs"

        self._root = Path(root_directory).resolve()
        self._cache = DirectoryExistenceCache(directory_cache_capacity)
        self._chunk_size = chunk_size
        logger.debug("FilesystemBlobBackend initialized with root=%s", self._root)

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "filesystem"

    @property
    def root(self) -> Path:
        """Return the root directory path."""
        return self._root

    @property
    def directory_cache(self) -> DirectoryExistenceCache:
        return self._cache

    def _key_path(self, key: BlobKey) -> Path:
        """Map a (possibly partial) key to its path, refusing anything outside the root."""
        path = self._root.joinpath(*key.parts)
        try:
            path.relative_to(self._root)
        except ValueError as e:
            raise InvalidKeyError("Key resolves outside storage root", key=key) from e
        return path

    def _key_from_path(self, path: Path) -> BlobKey | None:
        parts = path.relative_to(self._root).parts
        if len(parts) != 3:
            return None
        try:
            return BlobKey(*parts)
        except InvalidKeyError:
            return None

    def _ensure_directory(self, directory: Path, key: BlobKey) -> None:
        """Create a directory unless the cache says it already exists."""
        if self._cache.contains(directory):
            return
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to create blob directory: {e}", key=key, cause=e
            ) from e
        self._cache.add(directory)

    def _open_temporary(self, final_path: Path, key: BlobKey) -> tuple[BinaryIO, Path]:
        directory = final_path.parent
        self._ensure_directory(directory, key)
        tmp_path = directory / f"{_TMP_PREFIX}{final_path.name}.{uuid.uuid4().hex}{_TMP_SUFFIX}"
        try:
            return tmp_path.open("xb"), tmp_path
        except FileNotFoundError:
            # Cached directory was removed by a concurrent subtree delete.
            logger.warning("Stale directory cache entry for %s, recreating", directory)
            self._cache.discard(directory)
            self._ensure_directory(directory, key)
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to open blob file for writing: {e}", key=key, cause=e
            ) from e
        try:
            return tmp_path.open("xb"), tmp_path
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to open blob file for writing: {e}", key=key, cause=e
            ) from e

    @traced_storage_operation("open_write")
    def open_write(
        self,
        key: BlobKey,
        options: WriteOptions | None = None,
    ) -> tuple[BlobWriter, WriteHandle]:
        """Open a streaming write to a temporary file."""
        key.require_complete("open_write")
        options = options or WriteOptions()
        final_path = self._key_path(key)

        handle = WriteHandle(key)
        fileobj, tmp_path = self._open_temporary(final_path, key)
        destination = _FileDestination(fileobj, tmp_path, final_path)
        pipeline = HashingPipeline(destination, compress=should_compress(options))
        writer = BlobWriter(key, pipeline, handle, storage_key=str(final_path))
        return writer, handle

    @traced_storage_operation("open_read")
    def open_read(
        self,
        key: BlobKey,
        options: ReadOptions | None = None,
    ) -> BlobReader:
        """Open a blob file, positioned at the requested range."""
        key.require_complete("open_read")
        options = options or ReadOptions()
        path = self._key_path(key)

        try:
            fileobj = path.open("rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise BlobNotFoundError(key=key) from e
        except OSError as e:
            raise BackendUnavailableError(f"Failed to open blob: {e}", key=key, cause=e) from e

        try:
            decompressor = None
            if options.decompress and fileobj.read(len(GZIP_MAGIC)) == GZIP_MAGIC:
                if options.has_range:
                    raise UnsupportedCombinationError(key=key)
                decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)

            offset, limit = 0, None
            if options.range is not None and options.has_range:
                offset, limit = options.range.offset, options.range.length
            fileobj.seek(offset)
        except UnsupportedCombinationError:
            fileobj.close()
            raise
        except OSError as e:
            fileobj.close()
            raise BackendUnavailableError(f"Failed to read blob: {e}", key=key, cause=e) from e

        return BlobReader(
            key,
            fileobj,
            limit=limit,
            decompressor=decompressor,
            chunk_size=self._chunk_size,
        )

    @traced_storage_operation("remove")
    def remove(self, key: BlobKey) -> list[RemovedEntry]:
        """Delete one blob file or a whole graph/resource subtree."""
        key.require_prefix("remove")
        if key.is_complete:
            return self._remove_object(key)
        return self._remove_tree(key)

    def _remove_object(self, key: BlobKey) -> list[RemovedEntry]:
        path = self._key_path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise BackendUnavailableError(
                f"Failed to delete blob: {e}", key=key, cause=e
            ) from e
        logger.debug("Deleted blob: key=%s", key.path)
        return [key]

    def _enumerate(self, directory: Path, key: BlobKey) -> list[tuple[BlobKey, Path]]:
        """List every committed blob file under a directory."""
        found: list[tuple[BlobKey, Path]] = []

        def _on_error(error: OSError) -> None:
            # Subdirectories vanishing mid-walk were deleted concurrently.
            if not isinstance(error, FileNotFoundError):
                raise BackendUnavailableError(
                    f"Failed to list blobs: {error}", key=key, cause=error
                ) from error

        for dirpath, _dirnames, filenames in os.walk(directory, onerror=_on_error):
            for name in filenames:
                if _is_temporary(name):
                    continue
                path = Path(dirpath) / name
                entry = self._key_from_path(path)
                if entry is None:
                    logger.warning("Ignoring file outside the blob layout: %s", path)
                    continue
                found.append((entry, path))
        return found

    def _remove_tree(self, key: BlobKey) -> list[RemovedEntry]:
        directory = self._key_path(key)
        if not directory.is_dir():
            return []

        entries = self._enumerate(directory, key)
        self._cache.discard_tree(directory)

        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            # Removed concurrently.
            pass
        except OSError as e:
            removed = [entry for entry, path in entries if not path.exists()]
            failed = [entry for entry, path in entries if path.exists()]
            raise PartialFailureError(
                f"Failed to delete blob subtree: {e}",
                key=key,
                removed=removed,
                failed=failed,
                cause=e,
            ) from e

        logger.debug("Deleted blob subtree: key=%s count=%d", key.path, len(entries))
        return [entry for entry, _path in entries]
