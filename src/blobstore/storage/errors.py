"""Blob storage error types.

Provides typed exceptions for storage operations. Validation errors are
raised before any I/O; backend failures are wrapped with their cause and
never retried.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from blobstore.storage.models import BlobKey


class BlobStoreError(Exception):
    """Base exception for blob storage operations.

    Attributes:
        message: Human-readable error message.
        key: Blob key associated with the operation (if applicable).
    """

    def __init__(self, message: str, *, key: BlobKey | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.key = key

    def __str__(self) -> str:
        parts = [self.message]
        if self.key is not None:
            parts.append(f"key={self.key.path}")
        return " ".join(parts)


class InvalidKeyError(BlobStoreError):
    """Raised when a required key component is absent or malformed.

    Always raised synchronously, before any backend I/O is attempted.
    """

    def __init__(
        self,
        message: str = "Invalid blob key",
        *,
        key: BlobKey | None = None,
    ) -> None:
        super().__init__(message, key=key)


class BlobNotFoundError(BlobStoreError):
    """Raised when a read targets a key with no stored object.

    Deleting a missing object is not an error and never raises this.
    """

    def __init__(
        self,
        message: str = "Blob not found",
        *,
        key: BlobKey | None = None,
    ) -> None:
        super().__init__(message, key=key)


class BackendUnavailableError(BlobStoreError):
    """Raised when the storage backend cannot complete an operation.

    Indicates the backend itself failed (disk error, network error,
    non-success status from the object store) rather than a logical error
    like a missing object.
    """

    def __init__(
        self,
        message: str = "Storage backend unavailable",
        *,
        key: BlobKey | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, key=key)
        self.cause = cause


class UnsupportedCombinationError(BlobStoreError):
    """Raised when a byte range is combined with decompression of compressed content.

    Decompression has to start at byte 0 of the physical stream, so a
    ranged read of compressed content can only produce wrong bytes.
    """

    def __init__(
        self,
        message: str = "Range requests cannot be combined with decompression of compressed content",
        *,
        key: BlobKey | None = None,
    ) -> None:
        super().__init__(message, key=key)


class PartialFailureError(BlobStoreError):
    """Raised when a bulk delete only partly completed.

    Attributes:
        removed: Entries confirmed as physically removed.
        failed: Entries that were not removed (failed or never attempted).
    """

    def __init__(
        self,
        message: str = "Bulk delete partially failed",
        *,
        key: BlobKey | None = None,
        removed: Iterable[BlobKey] = (),
        failed: Iterable[BlobKey] = (),
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, key=key)
        self.removed: list[BlobKey] = list(removed)
        self.failed: list[BlobKey] = list(failed)
        self.cause = cause

    def __str__(self) -> str:
        return f"{super().__str__()} removed={len(self.removed)} failed={len(self.failed)}"


class ConfigError(BlobStoreError):
    """Raised when blob store configuration is invalid."""

    def __init__(self, message: str = "Invalid blob store configuration") -> None:
        super().__init__(message)
