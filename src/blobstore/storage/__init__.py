"""blobstore storage backends.

Provides streaming blob storage over a three-level key with SHA-256 tracking,
optional transparent gzip compression and hierarchical deletes.

Backends:
- FilesystemBlobBackend: Local directory tree
- S3BlobBackend: S3-compatible object store
"""

from blobstore.storage.backend import BlobBackend
from blobstore.storage.errors import (
    BackendUnavailableError,
    BlobNotFoundError,
    BlobStoreError,
    ConfigError,
    InvalidKeyError,
    PartialFailureError,
    UnsupportedCombinationError,
)
from blobstore.storage.filesystem_store import FilesystemBlobBackend
from blobstore.storage.models import (
    BlobKey,
    ByteRange,
    CompressedInfo,
    CompressionMode,
    ReadOptions,
    RemovedEntry,
    WriteOptions,
    WriteResult,
)
from blobstore.storage.s3_store import S3BlobBackend
from blobstore.storage.streams import BlobReader, BlobWriter, WriteHandle, WriteState

__all__ = [
    "BackendUnavailableError",
    "BlobBackend",
    "BlobKey",
    "BlobNotFoundError",
    "BlobReader",
    "BlobStoreError",
    "BlobWriter",
    "ByteRange",
    "CompressedInfo",
    "CompressionMode",
    "ConfigError",
    "FilesystemBlobBackend",
    "InvalidKeyError",
    "PartialFailureError",
    "ReadOptions",
    "RemovedEntry",
    "S3BlobBackend",
    "UnsupportedCombinationError",
    "WriteHandle",
    "WriteOptions",
    "WriteResult",
    "WriteState",
]
