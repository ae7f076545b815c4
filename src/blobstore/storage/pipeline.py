"""Write-side transform pipeline.

Every write flows through an ordered list of stages feeding one destination:

    raw hash -> destination
    raw hash -> gzip -> compressed hash -> destination

Stages are forward-only: each takes a chunk and returns the bytes to hand to
the next stage. The connector pushes each chunk through the whole chain before
returning, so a slow destination throttles the caller directly.
"""

from __future__ import annotations

import base64
import hashlib
import zlib
from typing import Final, Protocol

from blobstore.storage.models import CompressedInfo, CompressionMode, WriteOptions

GZIP_ENCODING: Final[str] = "gzip"

# gzip container, default compression level
_GZIP_WBITS: Final[int] = 16 + zlib.MAX_WBITS

# Declared types compressed under CompressionMode.AUTO besides text/*.
TEXTUAL_CONTENT_TYPES: Final[frozenset[str]] = frozenset(
    {
        "application/json",
        "application/ld+json",
        "application/xml",
        "application/xhtml+xml",
        "application/javascript",
        "application/x-ndjson",
        "application/csv",
        "image/svg+xml",
    }
)


def is_textual(content_type: str | None) -> bool:
    """Return True if a declared content type is on the textual allow-list.

    Parameters such as "; charset=utf-8" are ignored. Anything not explicitly
    listed (including unknown or missing types) counts as binary.
    """
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type.startswith("text/") or media_type in TEXTUAL_CONTENT_TYPES


def should_compress(options: WriteOptions) -> bool:
    """Decide whether a write is stored gzip-compressed."""
    if options.compression == CompressionMode.ON:
        return True
    if options.compression == CompressionMode.OFF:
        return False
    return is_textual(options.content_type)


class Destination(Protocol):
    """Final consumer of pipeline output (a file, an upload)."""

    def write(self, data: bytes) -> None: ...

    def commit(self) -> None: ...

    def abort(self) -> None: ...


class PipelineStage(Protocol):
    """One forward-only transform step."""

    def process(self, data: bytes) -> bytes: ...

    def flush(self) -> bytes: ...


class HashStage:
    """Pass-through stage accumulating byte count and SHA-256 digest."""

    def __init__(self) -> None:
        self._sha256 = hashlib.sha256()
        self.size = 0

    def process(self, data: bytes) -> bytes:
        self.size += len(data)
        self._sha256.update(data)
        return data

    def flush(self) -> bytes:
        return b""

    @property
    def checksum(self) -> str:
        """Return the base64 SHA-256 digest of everything seen so far."""
        return base64.b64encode(self._sha256.digest()).decode("ascii")


class GzipStage:
    """Stage compressing its input into a single gzip member."""

    def __init__(self, level: int = zlib.Z_DEFAULT_COMPRESSION) -> None:
        self._compressor = zlib.compressobj(level, zlib.DEFLATED, _GZIP_WBITS)

    def process(self, data: bytes) -> bytes:
        return self._compressor.compress(data)

    def flush(self) -> bytes:
        return self._compressor.flush(zlib.Z_FINISH)


class StagePipeline:
    """Connects an ordered list of stages to a destination."""

    def __init__(self, stages: list[PipelineStage], destination: Destination) -> None:
        self._stages = stages
        self._destination = destination

    def _push(self, data: bytes, start: int) -> None:
        for stage in self._stages[start:]:
            if not data:
                return
            data = stage.process(data)
        if data:
            self._destination.write(data)

    def write(self, data: bytes) -> None:
        """Push one chunk through every stage into the destination."""
        self._push(data, 0)

    def finish(self) -> None:
        """Flush every stage in order, then commit the destination."""
        for index, stage in enumerate(self._stages):
            self._push(stage.flush(), index + 1)
        self._destination.commit()

    def abort(self) -> None:
        """Discard the destination without committing."""
        self._destination.abort()


class HashingPipeline(StagePipeline):
    """StagePipeline that tracks raw and (optionally) compressed digests.

    Attributes:
        raw: Hash stage fed with the caller's bytes.
        compressed: Hash stage fed with gzip output, or None when not compressing.
    """

    def __init__(self, destination: Destination, *, compress: bool) -> None:
        self.raw = HashStage()
        self.compressed: HashStage | None = None
        stages: list[PipelineStage] = [self.raw]
        if compress:
            self.compressed = HashStage()
            stages.extend([GzipStage(), self.compressed])
        super().__init__(stages, destination)

    @property
    def compressed_info(self) -> CompressedInfo | None:
        """Return the compressed size/checksum, or None when not compressing."""
        if self.compressed is None:
            return None
        return CompressedInfo(
            encoding_format=GZIP_ENCODING,
            size=self.compressed.size,
            checksum=self.compressed.checksum,
        )
