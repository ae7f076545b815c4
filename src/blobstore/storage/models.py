"""Blob storage data models.

Provides typed dataclasses for blob keys, read/write options and write results.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from blobstore.storage.errors import InvalidKeyError

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_FORBIDDEN_CHARS = ("/", "\\", "\x00")


def _check_component(name: str, value: str | None) -> None:
    """Reject key components that would escape their level of the hierarchy."""
    if value is None:
        return
    if not isinstance(value, str) or not value:
        raise InvalidKeyError(f"{name} must be a non-empty string")
    if any(char in value for char in _FORBIDDEN_CHARS):
        raise InvalidKeyError(f"{name} contains a path separator or null byte: {value!r}")
    if value.startswith("."):
        raise InvalidKeyError(f"{name} must not start with '.': {value!r}")


@dataclass(frozen=True)
class BlobKey:
    """Hierarchical address of a stored blob.

    Attributes:
        graph_id: Top-level namespace. Required for every operation.
        resource_id: Resource within the graph. None addresses every resource.
        encoding_id: Encoding of the resource. None addresses every encoding.
    """

    graph_id: str | None
    resource_id: str | None = None
    encoding_id: str | None = None

    def __post_init__(self) -> None:
        _check_component("graph_id", self.graph_id)
        _check_component("resource_id", self.resource_id)
        _check_component("encoding_id", self.encoding_id)

    @property
    def parts(self) -> tuple[str, ...]:
        """Return the present components, outermost first."""
        return tuple(
            part for part in (self.graph_id, self.resource_id, self.encoding_id) if part is not None
        )

    @property
    def path(self) -> str:
        """Return the present components joined with '/'."""
        return "/".join(self.parts)

    @property
    def is_complete(self) -> bool:
        """Return True when all three components are present."""
        return len(self.parts) == 3

    def require_complete(self, operation: str) -> None:
        """Raise InvalidKeyError unless all three components are present."""
        missing = [
            name
            for name, value in (
                ("graph_id", self.graph_id),
                ("resource_id", self.resource_id),
                ("encoding_id", self.encoding_id),
            )
            if value is None
        ]
        if missing:
            raise InvalidKeyError(
                f"{operation} requires a complete key; missing {', '.join(missing)}",
                key=self,
            )

    def require_prefix(self, operation: str) -> None:
        """Raise InvalidKeyError unless the key denotes a subtree of one graph."""
        if self.graph_id is None:
            raise InvalidKeyError(f"{operation} requires graph_id", key=self)
        if self.resource_id is None and self.encoding_id is not None:
            raise InvalidKeyError(
                f"{operation} cannot address an encoding without its resource_id",
                key=self,
            )

    def to_dict(self) -> dict[str, str | None]:
        """Convert the key to a dictionary for JSON serialization."""
        return {
            "graph_id": self.graph_id,
            "resource_id": self.resource_id,
            "encoding_id": self.encoding_id,
        }


RemovedEntry = BlobKey


@dataclass(frozen=True)
class ByteRange:
    """Inclusive, zero-based byte window.

    Attributes:
        start: First byte to return. None means from the beginning.
        end: Last byte to return (inclusive). None means to the end of content.
    """

    start: int | None = None
    end: int | None = None

    def __post_init__(self) -> None:
        if self.start is not None and self.start < 0:
            raise ValueError(f"range start must be >= 0, got {self.start}")
        if self.end is not None and self.end < 0:
            raise ValueError(f"range end must be >= 0, got {self.end}")
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError(f"range end {self.end} is before start {self.start}")

    @property
    def is_empty(self) -> bool:
        """Return True when neither end is bounded."""
        return self.start is None and self.end is None

    @property
    def offset(self) -> int:
        """Return the first byte offset to read."""
        return self.start or 0

    @property
    def length(self) -> int | None:
        """Return the number of bytes in the window, or None if open-ended."""
        if self.end is None:
            return None
        return self.end - self.offset + 1

    def to_http_header(self) -> str:
        """Render the window as an HTTP Range header value."""
        end = "" if self.end is None else str(self.end)
        return f"bytes={self.offset}-{end}"


class CompressionMode(StrEnum):
    """Write-time compression policy."""

    OFF = "off"
    ON = "on"
    AUTO = "auto"


@dataclass(frozen=True)
class WriteOptions:
    """Per-call write options.

    Attributes:
        compression: Compression policy. AUTO compresses textual content types.
        content_type: Declared MIME type of the payload.
    """

    compression: CompressionMode = CompressionMode.AUTO
    content_type: str = DEFAULT_CONTENT_TYPE


@dataclass(frozen=True)
class ReadOptions:
    """Per-call read options.

    Attributes:
        range: Optional byte window to return.
        decompress: Transparently decompress content stored compressed.
    """

    range: ByteRange | None = None
    decompress: bool = False

    @property
    def has_range(self) -> bool:
        """Return True when a non-empty range was requested."""
        return self.range is not None and not self.range.is_empty


@dataclass(frozen=True)
class CompressedInfo:
    """Describes the compressed form of a stored blob.

    Attributes:
        encoding_format: Compression format (always "gzip" for writes).
        size: Number of compressed bytes persisted.
        checksum: Base64 SHA-256 digest of the compressed bytes.
    """

    encoding_format: str
    size: int
    checksum: str


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a committed write.

    Attributes:
        storage_key: Backend-specific location of the stored object.
        size: Number of raw bytes written by the caller.
        checksum: Base64 SHA-256 digest of the raw bytes.
        compressed: Compressed form description, when compression was applied.
    """

    storage_key: str
    size: int
    checksum: str
    compressed: CompressedInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the result to a dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "storage_key": self.storage_key,
            "size": self.size,
            "checksum": self.checksum,
        }
        if self.compressed is not None:
            data["compressed"] = {
                "encoding_format": self.compressed.encoding_format,
                "size": self.compressed.size,
                "checksum": self.compressed.checksum,
            }
        return data
