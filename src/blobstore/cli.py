"""blobstore CLI - put, get and delete blobs with the configured backend.

Usage:
    python -m blobstore put GRAPH RESOURCE ENCODING [--input PATH] [--compress MODE]
        [--content-type TYPE]
    python -m blobstore get GRAPH RESOURCE ENCODING [--output PATH] [--start N] [--end N]
        [--decompress]
    python -m blobstore delete GRAPH [RESOURCE [ENCODING]]

The backend is configured from BLOBSTORE_* environment variables.

Exit codes:
    0: Success
    1: Storage or configuration error
    2: Usage error
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from blobstore.observability.tracing import configure_tracing
from blobstore.params import infer_content_type
from blobstore.storage.errors import BlobStoreError
from blobstore.storage.models import (
    BlobKey,
    ByteRange,
    CompressionMode,
    ReadOptions,
    WriteOptions,
)
from blobstore.storage.streams import DEFAULT_CHUNK_SIZE
from blobstore.store import BlobStore


def _output_json(data: Any) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(error: Exception) -> dict[str, Any]:
    return {"error": type(error).__name__, "message": str(error)}


def cmd_put(store: BlobStore, args: argparse.Namespace) -> int:
    """Upload a file (or stdin) and print the WriteResult."""
    key = BlobKey(args.graph_id, args.resource_id, args.encoding_id)
    content_type = args.content_type or infer_content_type(args.input)
    options = WriteOptions(compression=CompressionMode(args.compress), content_type=content_type)

    if args.input:
        result = store.put(key, path=args.input, options=options)
    else:
        result = store.put(key, sys.stdin.buffer, options=options)

    _output_json(result.to_dict())
    return 0


def cmd_get(store: BlobStore, args: argparse.Namespace) -> int:
    """Stream a blob to a file (or stdout)."""
    key = BlobKey(args.graph_id, args.resource_id, args.encoding_id)
    byte_range = None
    if args.start is not None or args.end is not None:
        byte_range = ByteRange(args.start, args.end)
    options = ReadOptions(range=byte_range, decompress=args.decompress)

    with store.open_read(key, options) as reader:
        if args.output:
            with open(args.output, "wb") as f:
                for chunk in reader.iter_chunks(DEFAULT_CHUNK_SIZE):
                    f.write(chunk)
        else:
            for chunk in reader.iter_chunks(DEFAULT_CHUNK_SIZE):
                sys.stdout.buffer.write(chunk)
            sys.stdout.buffer.flush()
    return 0


def cmd_delete(store: BlobStore, args: argparse.Namespace) -> int:
    """Delete a blob or a subtree and print the removed keys."""
    key = BlobKey(args.graph_id, args.resource_id, args.encoding_id)
    removed = store.delete(key)
    _output_json({"removed": [entry.to_dict() for entry in removed]})
    return 0


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="blobstore",
        description="blobstore - content blob storage CLI",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    put_parser = subparsers.add_parser("put", help="Store a blob")
    put_parser.add_argument("graph_id", metavar="GRAPH")
    put_parser.add_argument("resource_id", metavar="RESOURCE")
    put_parser.add_argument("encoding_id", metavar="ENCODING")
    put_parser.add_argument(
        "--input",
        default=None,
        metavar="PATH",
        help="File to upload (reads from stdin if omitted)",
    )
    put_parser.add_argument(
        "--compress",
        choices=[mode.value for mode in CompressionMode],
        default=CompressionMode.AUTO.value,
        help="Compression policy (default: auto, compresses textual content)",
    )
    put_parser.add_argument(
        "--content-type",
        default=None,
        metavar="TYPE",
        help="MIME type (guessed from --input if omitted)",
    )

    get_parser = subparsers.add_parser("get", help="Read a blob")
    get_parser.add_argument("graph_id", metavar="GRAPH")
    get_parser.add_argument("resource_id", metavar="RESOURCE")
    get_parser.add_argument("encoding_id", metavar="ENCODING")
    get_parser.add_argument(
        "--output",
        default=None,
        metavar="PATH",
        help="File to write (writes to stdout if omitted)",
    )
    get_parser.add_argument("--start", type=_non_negative_int, default=None, metavar="N")
    get_parser.add_argument("--end", type=_non_negative_int, default=None, metavar="N")
    get_parser.add_argument(
        "--decompress",
        action="store_true",
        default=False,
        help="Decompress content stored gzip-compressed",
    )

    delete_parser = subparsers.add_parser("delete", help="Delete a blob or a subtree")
    delete_parser.add_argument("graph_id", metavar="GRAPH")
    delete_parser.add_argument("resource_id", metavar="RESOURCE", nargs="?", default=None)
    delete_parser.add_argument("encoding_id", metavar="ENCODING", nargs="?", default=None)

    return parser


COMMANDS = {
    "put": cmd_put,
    "get": cmd_get,
    "delete": cmd_delete,
}


def main(argv: list[str] | None = None, *, store: BlobStore | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Storage or configuration error
        2: Usage error (argparse exits with 2 on bad arguments)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    if args.command == "get" and args.start is not None and args.end is not None:
        if args.end < args.start:
            parser.error("--end must not be before --start")

    try:
        configure_tracing()
        if store is None:
            store = BlobStore.from_env()
        return COMMANDS[args.command](store, args)
    except (BlobStoreError, OSError) as e:
        print(json.dumps(_make_error_result(e), sort_keys=True), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
