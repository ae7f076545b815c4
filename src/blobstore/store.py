"""Blob store entry point.

BlobStore selects one backend from configuration at construction and forwards
every call to it. It also exposes the graph-model level operations that turn
an encoding mapping into a key, write it, and describe the outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO

from blobstore.config import (
    DEFAULT_API_PATHNAME_PREFIX,
    BlobStoreConfig,
    load_blob_store_config,
)
from blobstore.descriptors import build_delete_actions, build_encoding_descriptor
from blobstore.params import BlobParams, infer_content_type, resolve_blob_params
from blobstore.storage.backend import BlobBackend
from blobstore.storage.errors import ConfigError
from blobstore.storage.filesystem_store import FilesystemBlobBackend
from blobstore.storage.models import (
    BlobKey,
    ReadOptions,
    RemovedEntry,
    WriteOptions,
    WriteResult,
)
from blobstore.storage.s3_store import S3BlobBackend
from blobstore.storage.streams import DEFAULT_CHUNK_SIZE, BlobReader, BlobWriter, WriteHandle
from blobstore.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

Body = bytes | bytearray | memoryview | str | BinaryIO


def create_backend(config: BlobStoreConfig) -> BlobBackend:
    """Instantiate the backend named by the configuration.

    Raises:
        ConfigError: If the backend is unknown or its section is missing.
    """
    if config.backend == "filesystem":
        if config.filesystem is None:
            raise ConfigError("backend 'filesystem' requires a filesystem section")
        return FilesystemBlobBackend(
            config.filesystem.root_directory,
            directory_cache_capacity=config.filesystem.directory_cache_capacity,
        )

    if config.backend == "s3":
        if config.s3 is None:
            raise ConfigError("backend 's3' requires an s3 section")
        s3 = config.s3
        return S3BlobBackend(
            s3.bucket,
            object_name_prefix=s3.object_name_prefix,
            region=s3.region,
            endpoint_url=s3.endpoint_url,
            multipart_part_size=s3.multipart_part_size,
            connect_timeout=s3.connect_timeout,
            read_timeout=s3.read_timeout,
            max_attempts=s3.max_attempts,
        )

    raise ConfigError(f"Unknown blob store backend: {config.backend!r}")


class BlobStore:
    """Uniform put/get/delete over the configured backend."""

    def __init__(
        self,
        config: BlobStoreConfig | None = None,
        *,
        backend: BlobBackend | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: Store configuration. If None and no backend is given, it is
                loaded from the environment.
            backend: Pre-built backend, used instead of the one named by config.
        """
        if backend is None:
            if config is None:
                config = load_blob_store_config()
            backend = create_backend(config)
        self._config = config
        self._backend = backend
        logger.debug("BlobStore using backend=%s", self._backend.backend_name)

    @classmethod
    def from_env(cls) -> BlobStore:
        """Build a store from BLOBSTORE_* environment variables."""
        return cls(load_blob_store_config())

    @property
    def backend(self) -> BlobBackend:
        return self._backend

    @property
    def backend_name(self) -> str:
        return self._backend.backend_name

    @property
    def api_pathname_prefix(self) -> str:
        if self._config is None:
            return DEFAULT_API_PATHNAME_PREFIX
        return self._config.api_pathname_prefix

    def open_write(
        self, key: BlobKey, options: WriteOptions | None = None
    ) -> tuple[BlobWriter, WriteHandle]:
        return self._backend.open_write(key, options)

    def open_read(self, key: BlobKey, options: ReadOptions | None = None) -> BlobReader:
        return self._backend.open_read(key, options)

    def delete(self, key: BlobKey) -> list[RemovedEntry]:
        return self._backend.remove(key)

    @traced_storage_operation("put")
    def put(
        self,
        key: BlobKey,
        body: Body | None = None,
        *,
        path: str | Path | None = None,
        options: WriteOptions | None = None,
    ) -> WriteResult:
        """Write a whole payload and wait for the commit.

        Args:
            key: Complete key of the blob.
            body: Bytes, text (UTF-8 encoded) or a binary file object read in
                bounded chunks. Takes precedence over ``path``.
            path: File to upload when no body is given. Also used to infer the
                content type when no options are given.
            options: Write options.

        Returns:
            WriteResult of the committed write.

        Raises:
            ValueError: If neither body nor path is given.
            BlobStoreError: If the write fails.
        """
        if body is None and path is None:
            raise ValueError("put requires a body or a path")
        if options is None:
            options = WriteOptions(content_type=infer_content_type(path))

        writer, handle = self._backend.open_write(key, options)
        with writer:
            if body is None:
                with Path(path).open("rb") as source:  # type: ignore[arg-type]
                    _copy(source, writer)
            elif isinstance(body, str):
                writer.write(body.encode("utf-8"))
            elif isinstance(body, (bytes, bytearray, memoryview)):
                writer.write(body)
            else:
                _copy(body, writer)
        return handle.result()

    def get_bytes(self, key: BlobKey, options: ReadOptions | None = None) -> bytes:
        """Read a whole blob (or the requested window) into memory."""
        with self._backend.open_read(key, options) as reader:
            return reader.read()

    def resolve(
        self, encoding: Mapping[str, Any], overrides: Mapping[str, Any] | None = None
    ) -> BlobParams:
        """Resolve an encoding mapping with this store's content URL prefix."""
        return resolve_blob_params(
            encoding, overrides, api_pathname_prefix=self.api_pathname_prefix
        )

    def put_encoding(
        self,
        encoding: Mapping[str, Any],
        body: Body | None = None,
        *,
        overrides: Mapping[str, Any] | None = None,
        date_created: datetime | None = None,
    ) -> dict[str, Any]:
        """Store the payload of an encoding and return its descriptor.

        The payload is ``body`` if given, else the ``body`` or ``path``
        resolved from the encoding.
        """
        params = self.resolve(encoding, overrides)
        if body is None:
            body = params.body
        result = self.put(
            params.to_key(),
            body,
            path=params.path,
            options=params.to_write_options(),
        )
        return build_encoding_descriptor(params, result, date_created=date_created)

    def get_encoding(
        self,
        encoding: Mapping[str, Any],
        overrides: Mapping[str, Any] | None = None,
    ) -> BlobReader:
        params = self.resolve(encoding, overrides)
        return self._backend.open_read(params.to_key(), params.to_read_options())

    def delete_encoding(
        self,
        encoding: Mapping[str, Any],
        overrides: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Delete what the encoding resolves to and return DeleteAction records."""
        params = self.resolve(encoding, overrides)
        return build_delete_actions(self._backend.remove(params.to_key()))


def _copy(source: BinaryIO, writer: BlobWriter) -> None:
    while True:
        chunk = source.read(DEFAULT_CHUNK_SIZE)
        if not chunk:
            return
        writer.write(chunk)
