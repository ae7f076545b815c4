"""S3-compatible blob backend.

Stores each blob as one object named:
    {object_name_prefix}/{graph_id}/{resource_id}/{encoding_id}

Uploads stream through a bounded buffer: a payload that fits in one part is
sent with ``put_object``, anything larger becomes a multipart upload. When a
blob is stored compressed the object's ``Content-Encoding`` records it, and
reads rely on that header rather than sniffing bytes.

Environment Variables:
    BLOBSTORE_S3_BUCKET: Bucket name (default: "sa-blobs")
"""

from __future__ import annotations

import io
import logging
import os
import re
import zlib
from typing import Any, Final

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from blobstore.storage.backend import BlobBackend
from blobstore.storage.errors import (
    BackendUnavailableError,
    BlobNotFoundError,
    BlobStoreError,
    PartialFailureError,
    UnsupportedCombinationError,
)
from blobstore.storage.models import BlobKey, ReadOptions, RemovedEntry, WriteOptions
from blobstore.storage.pipeline import GZIP_ENCODING, HashingPipeline, should_compress
from blobstore.storage.streams import DEFAULT_CHUNK_SIZE, BlobReader, BlobWriter, WriteHandle
from blobstore.storage.tracing import traced_storage_operation

logger = logging.getLogger(__name__)

BLOBSTORE_S3_BUCKET_ENV: Final[str] = "BLOBSTORE_S3_BUCKET"

DEFAULT_BUCKET: Final[str] = "sa-blobs"
DEFAULT_OBJECT_NAME_PREFIX: Final[str] = "blob"
MIN_PART_SIZE: Final[int] = 5 * 1024 * 1024
DEFAULT_PART_SIZE: Final[int] = 8 * 1024 * 1024
DELETE_BATCH_SIZE: Final[int] = 1000

_NOT_FOUND_CODES: Final[frozenset[str]] = frozenset({"NoSuchKey", "NotFound", "404"})
_GZIP_PATTERN = re.compile(r"\bgzip\b")
_DEFLATE_PATTERN = re.compile(r"\bdeflate\b")


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class _S3UploadDestination:
    """Pipeline destination streaming into one S3 object."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        object_name: str,
        *,
        part_size: int,
        extra_args: dict[str, str],
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._object_name = object_name
        self._part_size = part_size
        self._extra_args = extra_args
        self._buffer = bytearray()
        self._upload_id: str | None = None
        self._parts: list[dict[str, Any]] = []

    def write(self, data: bytes) -> None:
        self._buffer += data
        while len(self._buffer) >= self._part_size:
            part = bytes(self._buffer[: self._part_size])
            del self._buffer[: self._part_size]
            self._upload_part(part)

    def _upload_part(self, body: bytes) -> None:
        if self._upload_id is None:
            response = self._client.create_multipart_upload(
                Bucket=self._bucket, Key=self._object_name, **self._extra_args
            )
            self._upload_id = response["UploadId"]
        part_number = len(self._parts) + 1
        response = self._client.upload_part(
            Bucket=self._bucket,
            Key=self._object_name,
            UploadId=self._upload_id,
            PartNumber=part_number,
            Body=body,
        )
        self._parts.append({"ETag": response["ETag"], "PartNumber": part_number})

    def commit(self) -> None:
        if self._upload_id is None:
            self._client.put_object(
                Bucket=self._bucket,
                Key=self._object_name,
                Body=bytes(self._buffer),
                **self._extra_args,
            )
        else:
            if self._buffer:
                self._upload_part(bytes(self._buffer))
            self._client.complete_multipart_upload(
                Bucket=self._bucket,
                Key=self._object_name,
                UploadId=self._upload_id,
                MultipartUpload={"Parts": self._parts},
            )
        self._buffer.clear()

    def abort(self) -> None:
        self._buffer.clear()
        if self._upload_id is None:
            return
        upload_id, self._upload_id = self._upload_id, None
        self._client.abort_multipart_upload(
            Bucket=self._bucket, Key=self._object_name, UploadId=upload_id
        )


class S3BlobBackend(BlobBackend):
    """S3-compatible blob storage implementation."""

    def __init__(
        self,
        bucket: str | None = None,
        *,
        object_name_prefix: str = DEFAULT_OBJECT_NAME_PREFIX,
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
        multipart_part_size: int = DEFAULT_PART_SIZE,
        connect_timeout: float = 10.0,
        read_timeout: float = 60.0,
        max_attempts: int = 3,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        """Initialize S3 storage.

        Args:
            bucket: Bucket name. If None, uses BLOBSTORE_S3_BUCKET or "sa-blobs".
            object_name_prefix: Fixed first segment of every object name.
            region: AWS region for the client.
            endpoint_url: Custom endpoint for S3-compatible stores.
            client: Pre-built S3 client. When given, region/endpoint/timeouts are ignored.
            multipart_part_size: Upload buffer size; at least 5 MiB.
            connect_timeout: Transport connect timeout in seconds.
            read_timeout: Transport read timeout in seconds.
            max_attempts: Transport-level attempts made by botocore.
            chunk_size: Read size used by readers.
        """
        if multipart_part_size < MIN_PART_SIZE:
            raise ValueError(
                f"multipart_part_size must be >= {MIN_PART_SIZE}, got {multipart_part_size}"
            )
        prefix = object_name_prefix.strip("/")
        if not prefix:
            raise ValueError("object_name_prefix must not be empty")

        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                config=BotoConfig(
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"max_attempts": max_attempts, "mode": "standard"},
                ),
            )

        self._client = client
        self._bucket = bucket or os.environ.get(BLOBSTORE_S3_BUCKET_ENV) or DEFAULT_BUCKET
        self._prefix = prefix
        self._part_size = multipart_part_size
        self._chunk_size = chunk_size
        logger.debug("S3BlobBackend initialized with bucket=%s prefix=%s", self._bucket, prefix)

    @property
    def backend_name(self) -> str:
        """Return the backend identifier."""
        return "s3"

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def object_name_prefix(self) -> str:
        return self._prefix

    def object_name(self, key: BlobKey) -> str:
        """Return the object name (or listing prefix stem) for a key."""
        return "/".join((self._prefix, *key.parts))

    def _entry_from_name(self, name: str) -> BlobKey | None:
        stem = f"{self._prefix}/"
        if not name.startswith(stem):
            logger.warning("Object name outside prefix %s: %s", self._prefix, name)
            return None
        parts = name[len(stem) :].split("/")
        if len(parts) != 3:
            logger.warning("Object name outside the blob layout: %s", name)
            return None
        try:
            return BlobKey(*parts)
        except BlobStoreError:
            logger.warning("Object name with invalid key components: %s", name)
            return None

    def _entries_from_names(self, names: list[str]) -> list[BlobKey]:
        entries = (self._entry_from_name(name) for name in names)
        return [entry for entry in entries if entry is not None]

    @traced_storage_operation("open_write")
    def open_write(
        self,
        key: BlobKey,
        options: WriteOptions | None = None,
    ) -> tuple[BlobWriter, WriteHandle]:
        """Open a streaming upload."""
        key.require_complete("open_write")
        options = options or WriteOptions()
        compress = should_compress(options)
        name = self.object_name(key)

        extra_args = {"ContentType": options.content_type}
        if compress:
            extra_args["ContentEncoding"] = GZIP_ENCODING

        handle = WriteHandle(key)
        destination = _S3UploadDestination(
            self._client,
            self._bucket,
            name,
            part_size=self._part_size,
            extra_args=extra_args,
        )
        pipeline = HashingPipeline(destination, compress=compress)
        writer = BlobWriter(key, pipeline, handle, storage_key=name)
        return writer, handle

    @traced_storage_operation("open_read")
    def open_read(
        self,
        key: BlobKey,
        options: ReadOptions | None = None,
    ) -> BlobReader:
        """Fetch an object, checking status and headers before streaming the body."""
        key.require_complete("open_read")
        options = options or ReadOptions()

        params: dict[str, Any] = {"Bucket": self._bucket, "Key": self.object_name(key)}
        if options.range is not None and options.has_range:
            params["Range"] = options.range.to_http_header()

        try:
            response = self._client.get_object(**params)
        except ClientError as e:
            code = _error_code(e)
            if code in _NOT_FOUND_CODES:
                raise BlobNotFoundError(key=key) from e
            if code == "InvalidRange":
                # Window starts past the end of the stored (possibly compressed) bytes.
                encoding = self._content_encoding(key) if options.decompress else None
                if self._decoder_for(encoding) is not None:
                    raise UnsupportedCombinationError(key=key) from e
                return BlobReader(key, io.BytesIO(b""))
            raise BackendUnavailableError(
                f"get_object failed ({code}): {e}", key=key, cause=e
            ) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(f"get_object failed: {e}", key=key, cause=e) from e

        body = response["Body"]
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode", 200)
        if status >= 300:
            body.close()
            raise BackendUnavailableError(
                f"get_object returned status code {status}", key=key
            )

        decompressor = None
        if options.decompress:
            decompressor = self._decoder_for(response.get("ContentEncoding"))
            if decompressor is not None and options.has_range:
                body.close()
                raise UnsupportedCombinationError(key=key)

        return BlobReader(key, body, decompressor=decompressor, chunk_size=self._chunk_size)

    @staticmethod
    def _decoder_for(content_encoding: str | None) -> Any:
        """Return a zlib decompressor for a gzip/deflate Content-Encoding, else None."""
        encoding = (content_encoding or "identity").lower()
        if _GZIP_PATTERN.search(encoding):
            return zlib.decompressobj(16 + zlib.MAX_WBITS)
        if _DEFLATE_PATTERN.search(encoding):
            return zlib.decompressobj()
        return None

    def _content_encoding(self, key: BlobKey) -> str | None:
        try:
            response = self._client.head_object(Bucket=self._bucket, Key=self.object_name(key))
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                raise BlobNotFoundError(key=key) from e
            raise BackendUnavailableError(
                f"head_object failed ({_error_code(e)}): {e}", key=key, cause=e
            ) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(f"head_object failed: {e}", key=key, cause=e) from e
        return response.get("ContentEncoding")

    @traced_storage_operation("remove")
    def remove(self, key: BlobKey) -> list[RemovedEntry]:
        """Delete one object or every object under a partial key."""
        key.require_prefix("remove")
        if key.is_complete:
            return self._remove_object(key)

        # Names outside the blob layout are left in place.
        names = [
            name
            for name in self._list_names(f"{self.object_name(key)}/", key)
            if self._entry_from_name(name) is not None
        ]
        if not names:
            return []
        return self._delete_names(names, key)

    def _remove_object(self, key: BlobKey) -> list[RemovedEntry]:
        name = self.object_name(key)
        try:
            self._client.head_object(Bucket=self._bucket, Key=name)
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES:
                return []
            raise BackendUnavailableError(
                f"head_object failed ({_error_code(e)}): {e}", key=key, cause=e
            ) from e
        except BotoCoreError as e:
            raise BackendUnavailableError(f"head_object failed: {e}", key=key, cause=e) from e

        try:
            self._client.delete_object(Bucket=self._bucket, Key=name)
        except (ClientError, BotoCoreError) as e:
            raise BackendUnavailableError(f"delete_object failed: {e}", key=key, cause=e) from e
        logger.debug("Deleted blob: key=%s", key.path)
        return [key]

    def _list_names(self, prefix: str, key: BlobKey) -> list[str]:
        """Collect every object name under a prefix, following continuation tokens."""
        names: list[str] = []
        token: str | None = None
        pages = 0
        while True:
            params: dict[str, Any] = {"Bucket": self._bucket, "Prefix": prefix}
            if token is not None:
                params["ContinuationToken"] = token
            try:
                response = self._client.list_objects_v2(**params)
            except (ClientError, BotoCoreError) as e:
                if pages == 0:
                    raise BackendUnavailableError(
                        f"list_objects_v2 failed: {e}", key=key, cause=e
                    ) from e
                raise PartialFailureError(
                    f"Listing failed after {pages} page(s); nothing was deleted",
                    key=key,
                    failed=self._entries_from_names(names),
                    cause=e,
                ) from e
            pages += 1
            names.extend(item["Key"] for item in response.get("Contents", []))
            token = response.get("NextContinuationToken")
            if not response.get("IsTruncated") or token is None:
                return names

    def _delete_names(self, names: list[str], key: BlobKey) -> list[RemovedEntry]:
        """Delete objects in batches, reporting exactly what the store confirmed."""
        removed: list[BlobKey] = []
        failed_names: list[str] = []
        for start in range(0, len(names), DELETE_BATCH_SIZE):
            batch = names[start : start + DELETE_BATCH_SIZE]
            try:
                response = self._client.delete_objects(
                    Bucket=self._bucket,
                    Delete={"Objects": [{"Key": name} for name in batch], "Quiet": False},
                )
            except (ClientError, BotoCoreError) as e:
                raise PartialFailureError(
                    f"delete_objects failed: {e}",
                    key=key,
                    removed=removed,
                    failed=self._entries_from_names(failed_names + names[start:]),
                    cause=e,
                ) from e
            removed.extend(
                self._entries_from_names([item["Key"] for item in response.get("Deleted", [])])
            )
            failed_names.extend(item["Key"] for item in response.get("Errors", []))

        if failed_names:
            raise PartialFailureError(
                f"{len(failed_names)} object(s) could not be deleted",
                key=key,
                removed=removed,
                failed=self._entries_from_names(failed_names),
            )
        logger.debug("Deleted blob subtree: key=%s count=%d", key.path, len(removed))
        return removed
