"""Graph-model records describing blob store outcomes.

``build_encoding_descriptor`` turns a WriteResult into the encoding metadata
stored alongside a resource; ``build_delete_actions`` turns removed entries
into schema.org DeleteAction records.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from blobstore.params import BlobParams, get_id, infer_content_type
from blobstore.storage.models import RemovedEntry, WriteResult

_PASS_THROUGH = (
    ("encodes_creative_work", "encodesCreativeWork"),
    ("is_based_on", "isBasedOn"),
    ("is_node_of", "isNodeOf"),
)


def _checksum(value: str) -> dict[str, str]:
    return {
        "@type": "Checksum",
        "checksumAlgorithm": "sha256",
        "checksumValue": value,
    }


def build_encoding_descriptor(
    params: BlobParams,
    result: WriteResult,
    *,
    date_created: datetime | None = None,
) -> dict[str, Any]:
    """Describe a committed write as an encoding node.

    Args:
        params: Parameters the write was resolved from.
        result: Outcome of the write.
        date_created: Creation time. Defaults to now (UTC).

    Returns:
        Encoding mapping. Optional properties are present only when known;
        ``encoding`` describes the gzip form when the blob was compressed.
    """
    created = date_created or datetime.now(UTC)
    descriptor: dict[str, Any] = {"dateCreated": created.isoformat()}

    if params.encoding_id:
        descriptor["@id"] = params.encoding_id
    if params.type:
        descriptor["@type"] = params.type
    if params.creator:
        descriptor["creator"] = params.creator

    file_format = params.file_format or (infer_content_type(params.path) if params.path else None)
    if file_format:
        descriptor["fileFormat"] = file_format

    descriptor["contentSize"] = result.size

    name = params.name or (Path(params.path).name if params.path else None)
    if name is not None:
        descriptor["name"] = name
    if params.content_url is not None:
        descriptor["contentUrl"] = params.content_url

    descriptor["contentChecksum"] = _checksum(result.checksum)

    for field_name, prop in _PASS_THROUGH:
        value = getattr(params, field_name)
        if value:
            descriptor[prop] = value

    if get_id(descriptor.get("isNodeOf")) is None and params.issue_id:
        descriptor["isNodeOf"] = params.issue_id

    if result.compressed is not None:
        descriptor["encoding"] = {
            "@type": "MediaObject",
            "contentSize": result.compressed.size,
            "encodingFormat": result.compressed.encoding_format,
            "contentChecksum": _checksum(result.compressed.checksum),
        }

    return descriptor


def build_delete_actions(entries: Iterable[RemovedEntry]) -> list[dict[str, Any]]:
    """Describe removed blobs as completed DeleteActions."""
    return [
        {
            "@type": "DeleteAction",
            "actionStatus": "CompletedActionStatus",
            "object": {
                "@id": entry.encoding_id,
                "encodesCreativeWork": entry.resource_id,
            },
            "instrument": entry.graph_id,
        }
        for entry in entries
    ]
