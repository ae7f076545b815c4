"""Blob backend interface definition.

Provides the BlobBackend abstract base class that all storage backends implement.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from blobstore.storage.models import BlobKey, ReadOptions, RemovedEntry, WriteOptions
from blobstore.storage.streams import BlobReader, BlobWriter, WriteHandle


class BlobBackend(ABC):
    """Abstract base class for blob storage backends.

    All implementations must provide:
    - Streaming writes with raw (and, when compressing, compressed) SHA-256 tracking
    - Range-aware streaming reads with optional transparent decompression
    - Single-object and subtree deletes reporting what was removed

    Implementations:
    - FilesystemBlobBackend: Local directory tree
    - S3BlobBackend: S3-compatible object store
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend identifier for observability.

        Returns:
            Backend name string (e.g., "filesystem", "s3").
        """
        ...

    @abstractmethod
    def open_write(
        self,
        key: BlobKey,
        options: WriteOptions | None = None,
    ) -> tuple[BlobWriter, WriteHandle]:
        """Open a streaming write.

        Args:
            key: Complete key of the blob to write.
            options: Compression mode and declared content type.

        Returns:
            The writer accepting raw bytes and the handle resolving with the
            WriteResult once the writer is closed.

        Raises:
            InvalidKeyError: If any key component is missing.
            BackendUnavailableError: If the destination cannot be prepared.
        """
        ...

    @abstractmethod
    def open_read(
        self,
        key: BlobKey,
        options: ReadOptions | None = None,
    ) -> BlobReader:
        """Open a streaming read.

        Args:
            key: Complete key of the blob to read.
            options: Optional byte range and decompression flag.

        Returns:
            A BlobReader positioned at the first requested byte.

        Raises:
            InvalidKeyError: If any key component is missing.
            BlobNotFoundError: If no object is stored under the key.
            UnsupportedCombinationError: If a range is requested together with
                decompression of compressed content.
            BackendUnavailableError: If the backend cannot complete the read.
        """
        ...

    @abstractmethod
    def remove(self, key: BlobKey) -> list[RemovedEntry]:
        """Delete one object or every object under a partial key.

        Args:
            key: Complete key, or a key with trailing components set to None.

        Returns:
            The entries physically removed. Empty if nothing matched.

        Raises:
            InvalidKeyError: If graph_id is missing or the key has a gap.
            PartialFailureError: If a bulk delete only partly completed.
            BackendUnavailableError: If the backend cannot complete the delete.
        """
        ...
