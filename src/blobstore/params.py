"""Resolve graph-model encoding mappings into blob store parameters.

An encoding is a JSON-LD style mapping (``@id``, ``encodesCreativeWork``,
``isNodeOf``, ``fileFormat``, ...). Callers may also pass flat overrides
using the same vocabulary or the snake_case field names of BlobParams.

Precedence, lowest first:
    1. defaults (creator)
    2. values extracted from the encoding
    3. overrides
    4. values derived from ``encodesCreativeWork`` and ``isNodeOf``
"""

from __future__ import annotations

import mimetypes
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Final

from blobstore.storage.errors import ConfigError
from blobstore.storage.models import (
    DEFAULT_CONTENT_TYPE,
    BlobKey,
    ByteRange,
    CompressionMode,
    ReadOptions,
    WriteOptions,
)

DEFAULT_CREATOR: Final[str] = "bot:BlobStore"

GRAPH_ID_PREFIXES: Final[tuple[str, ...]] = ("graph:", "journal:", "user:", "org:")
ISSUE_ID_PREFIX: Final[str] = "issue:"

_ALIASES: Final[dict[str, str]] = {
    "@id": "encoding_id",
    "id": "encoding_id",
    "encodingId": "encoding_id",
    "graphId": "graph_id",
    "userId": "graph_id",
    "organizationId": "graph_id",
    "periodicalId": "graph_id",
    "resourceId": "resource_id",
    "@type": "type",
    "type": "type",
    "encodingType": "type",
    "fileFormat": "file_format",
    "contentSize": "content_size",
    "contentUrl": "content_url",
    "compress": "compress",
    "decompress": "decompress",
    "range": "range",
    "name": "name",
    "path": "path",
    "body": "body",
    "creator": "creator",
    "isBasedOn": "is_based_on",
    "isNodeOf": "is_node_of",
    "encodesCreativeWork": "encodes_creative_work",
}

_COMPRESS_ALIASES: Final[dict[str, CompressionMode]] = {
    **{mode.value: mode for mode in CompressionMode},
    "true": CompressionMode.ON,
    "yes": CompressionMode.ON,
    "1": CompressionMode.ON,
    "false": CompressionMode.OFF,
    "no": CompressionMode.OFF,
    "0": CompressionMode.OFF,
}


def infer_content_type(path: str | Path | None) -> str:
    """Guess a MIME type from a file name, defaulting to application/octet-stream."""
    if not path:
        return DEFAULT_CONTENT_TYPE
    content_type, _encoding = mimetypes.guess_type(str(path))
    return content_type or DEFAULT_CONTENT_TYPE


def get_id(value: Any) -> str | None:
    """Return the id of a node given either the id itself or a mapping with ``@id``."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        node_id = value.get("@id")
        return node_id if isinstance(node_id, str) and node_id else None
    return None


def unprefix(node_id: str) -> str:
    """Strip a CURIE prefix: ``"encoding:abc"`` -> ``"abc"``."""
    return node_id.split(":", 1)[1] if ":" in node_id else node_id


def is_graph_id(node_id: str) -> bool:
    return node_id.startswith(GRAPH_ID_PREFIXES)


@dataclass
class BlobParams:
    """Parameters of one blob store call, resolved from an encoding."""

    graph_id: str | None = None
    resource_id: str | None = None
    encoding_id: str | None = None
    issue_id: str | None = None
    type: str | None = None
    creator: str | None = None
    file_format: str | None = None
    content_size: int | None = None
    name: str | None = None
    content_url: str | None = None
    compress: bool | str | None = None
    decompress: bool = False
    range: Any = None
    path: str | None = None
    body: Any = None
    is_based_on: Any = None
    is_node_of: Any = None
    encodes_creative_work: Any = None

    def to_key(self) -> BlobKey:
        return BlobKey(self.graph_id, self.resource_id, self.encoding_id)

    def to_write_options(self) -> WriteOptions:
        """Translate ``compress`` and ``file_format`` into WriteOptions.

        ``compress`` may be a bool, one of "on"/"off"/"auto", a bool-like
        string such as "true" or "0", or None (auto).
        Without a ``file_format`` the content type is guessed from ``path``.
        """
        if self.compress is None:
            compression = CompressionMode.AUTO
        elif isinstance(self.compress, bool):
            compression = CompressionMode.ON if self.compress else CompressionMode.OFF
        else:
            value = str(self.compress).strip().lower()
            compression = _COMPRESS_ALIASES.get(value)
            if compression is None:
                raise ConfigError(f"Unsupported compress value: {self.compress!r}")
        content_type = self.file_format or infer_content_type(self.path)
        return WriteOptions(compression=compression, content_type=content_type)

    def to_read_options(self) -> ReadOptions:
        """Translate ``range`` and ``decompress`` into ReadOptions.

        ``range`` may be a ByteRange, a ``[start, end]`` pair or a mapping
        with ``start``/``end``.
        """
        return ReadOptions(range=_to_byte_range(self.range), decompress=bool(self.decompress))


_FIELD_NAMES: Final[frozenset[str]] = frozenset(field.name for field in fields(BlobParams))


def _to_byte_range(value: Any) -> ByteRange | None:
    if value is None or isinstance(value, ByteRange):
        return value
    if isinstance(value, Mapping):
        return ByteRange(value.get("start"), value.get("end"))
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        bounds = list(value) + [None, None]
        return ByteRange(bounds[0], bounds[1])
    raise ValueError(f"Unsupported range value: {value!r}")


def _extract(source: Mapping[str, Any]) -> dict[str, Any]:
    """Map aliased keys onto BlobParams fields, ignoring unknown keys."""
    extracted: dict[str, Any] = {}
    for name, value in source.items():
        if value is None:
            continue
        field_name = _ALIASES.get(name) or (name if name in _FIELD_NAMES else None)
        if field_name is None:
            continue
        if field_name == "encoding_id":
            value = get_id(value)
            if value is None:
                continue
        extracted[field_name] = value
    return extracted


def _apply_node(derived: dict[str, Any], node: Any) -> None:
    """Record a parent node id as the graph or the issue the blob belongs to."""
    node_id = get_id(node)
    if node_id is None:
        return
    if is_graph_id(node_id):
        derived["graph_id"] = node_id
    elif node_id.startswith(ISSUE_ID_PREFIX):
        derived["issue_id"] = node_id


def _derive(encoding: Mapping[str, Any]) -> dict[str, Any]:
    derived: dict[str, Any] = {}

    resource = encoding.get("encodesCreativeWork")
    if resource is not None:
        resource_id = get_id(resource)
        if resource_id is not None:
            derived["resource_id"] = resource_id
            _apply_node(derived, resource_id)
        if isinstance(resource, Mapping) and resource.get("isNodeOf") is not None:
            _apply_node(derived, resource["isNodeOf"])

    if encoding.get("isNodeOf") is not None:
        _apply_node(derived, encoding["isNodeOf"])

    issue_id = derived.get("issue_id")
    if "graph_id" not in derived and issue_id is not None:
        periodical = unprefix(issue_id).split("/", 1)[0]
        derived["graph_id"] = f"journal:{periodical}"

    return derived


def resolve_blob_params(
    encoding: Mapping[str, Any] | None,
    overrides: Mapping[str, Any] | None = None,
    *,
    api_pathname_prefix: str = "/encoding/",
) -> BlobParams:
    """Resolve an encoding (plus overrides) into BlobParams.

    Args:
        encoding: Encoding mapping, possibly with nested resource nodes.
        overrides: Flat values taking precedence over the encoding.
        api_pathname_prefix: Prefix of the generated ``content_url``.

    Returns:
        Resolved BlobParams. Key components may still be None; validation
        happens when the key is built.
    """
    encoding = encoding or {}
    values: dict[str, Any] = {"creator": DEFAULT_CREATOR}
    values.update(_extract(encoding))
    values.update(_extract(overrides or {}))
    values.update(_derive(encoding))

    graph_id = values.get("graph_id")
    if isinstance(graph_id, str):
        values["graph_id"] = graph_id.split("?", 1)[0]

    encoding_id = values.get("encoding_id")
    if not values.get("content_url") and encoding_id:
        values["content_url"] = f"{api_pathname_prefix}{unprefix(encoding_id)}"

    return BlobParams(**values)
