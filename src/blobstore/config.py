"""Blob store configuration.

Backend settings are supplied once at construction; nothing is configured per
call. ``load_blob_store_config`` builds the configuration from the environment.

Environment Variables:
    BLOBSTORE_BACKEND: "filesystem" or "s3" (default: "filesystem")
    BLOBSTORE_FS_ROOT: Root directory of the filesystem backend (default: ./blobs)
    BLOBSTORE_DIR_CACHE_CAPACITY: Directory-existence cache size (default: 100)
    BLOBSTORE_S3_BUCKET: Bucket name (default: "sa-blobs")
    BLOBSTORE_S3_PREFIX: Object name prefix (default: "blob")
    BLOBSTORE_S3_REGION: AWS region (falls back to AWS_REGION)
    BLOBSTORE_S3_ENDPOINT_URL: Custom endpoint for S3-compatible stores
    BLOBSTORE_S3_PART_SIZE: Multipart upload part size in bytes (default: 8 MiB)
    BLOBSTORE_API_PATHNAME_PREFIX: Prefix of generated content URLs (default: "/encoding/")
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Final, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from blobstore.storage.directory_cache import DEFAULT_DIRECTORY_CACHE_CAPACITY
from blobstore.storage.errors import ConfigError
from blobstore.storage.s3_store import (
    DEFAULT_BUCKET,
    DEFAULT_OBJECT_NAME_PREFIX,
    DEFAULT_PART_SIZE,
    MIN_PART_SIZE,
)

ENV_BACKEND: Final[str] = "BLOBSTORE_BACKEND"
ENV_FS_ROOT: Final[str] = "BLOBSTORE_FS_ROOT"
ENV_DIR_CACHE_CAPACITY: Final[str] = "BLOBSTORE_DIR_CACHE_CAPACITY"
ENV_S3_BUCKET: Final[str] = "BLOBSTORE_S3_BUCKET"
ENV_S3_PREFIX: Final[str] = "BLOBSTORE_S3_PREFIX"
ENV_S3_REGION: Final[str] = "BLOBSTORE_S3_REGION"
ENV_S3_ENDPOINT_URL: Final[str] = "BLOBSTORE_S3_ENDPOINT_URL"
ENV_S3_PART_SIZE: Final[str] = "BLOBSTORE_S3_PART_SIZE"
ENV_API_PATHNAME_PREFIX: Final[str] = "BLOBSTORE_API_PATHNAME_PREFIX"

DEFAULT_API_PATHNAME_PREFIX: Final[str] = "/encoding/"

BackendName = Literal["filesystem", "s3"]


class FilesystemBackendConfig(BaseModel):
    """Filesystem backend settings.

    Attributes:
        root_directory: Root of the blob directory tree.
        directory_cache_capacity: Number of directories remembered as existing.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    root_directory: Path
    directory_cache_capacity: int = Field(default=DEFAULT_DIRECTORY_CACHE_CAPACITY, ge=1)


class S3BackendConfig(BaseModel):
    """S3 backend settings.

    Attributes:
        bucket: Bucket holding the blobs.
        object_name_prefix: Fixed first segment of every object name.
        region: AWS region.
        endpoint_url: Custom endpoint (MinIO, localstack, ...).
        multipart_part_size: Upload buffer and part size in bytes.
        connect_timeout: Transport connect timeout in seconds.
        read_timeout: Transport read timeout in seconds.
        max_attempts: Transport-level attempts made by botocore.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    bucket: str = Field(default=DEFAULT_BUCKET, min_length=3, max_length=63)
    object_name_prefix: str = Field(
        default=DEFAULT_OBJECT_NAME_PREFIX, min_length=1, pattern=r"^[^/]+(/[^/]+)*$"
    )
    region: str | None = None
    endpoint_url: str | None = None
    multipart_part_size: int = Field(default=DEFAULT_PART_SIZE, ge=MIN_PART_SIZE)
    connect_timeout: float = Field(default=10.0, gt=0)
    read_timeout: float = Field(default=60.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)


class BlobStoreConfig(BaseModel):
    """Top-level blob store configuration.

    Exactly the section matching ``backend`` is required.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    backend: BackendName = "filesystem"
    filesystem: FilesystemBackendConfig | None = None
    s3: S3BackendConfig | None = None
    api_pathname_prefix: str = DEFAULT_API_PATHNAME_PREFIX

    @model_validator(mode="after")
    def _check_backend_section(self) -> BlobStoreConfig:
        if self.backend == "filesystem" and self.filesystem is None:
            raise ValueError("backend 'filesystem' requires a filesystem section")
        if self.backend == "s3" and self.s3 is None:
            raise ValueError("backend 's3' requires an s3 section")
        return self


def _parse_positive_int(env_var: str, default: int) -> int:
    """Parse a positive integer from environment variable.

    Raises:
        ConfigError: If value is set but not a positive integer.
    """
    raw = os.environ.get(env_var, "").strip()
    if not raw:
        return default

    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{env_var} must be a positive integer, got '{raw}'") from e

    if value <= 0:
        raise ConfigError(f"{env_var} must be a positive integer, got {value}")

    return value


def _get_env_str(key: str) -> str | None:
    value = os.environ.get(key, "").strip()
    return value or None


def load_blob_store_config() -> BlobStoreConfig:
    """Load blob store configuration from environment variables.

    Returns:
        Validated BlobStoreConfig.

    Raises:
        ConfigError: If any value is invalid.
    """
    backend = (_get_env_str(ENV_BACKEND) or "filesystem").lower()
    if backend not in ("filesystem", "s3"):
        raise ConfigError(f"{ENV_BACKEND} must be 'filesystem' or 's3', got '{backend}'")

    api_prefix = os.environ.get(ENV_API_PATHNAME_PREFIX)
    if api_prefix is None:
        api_prefix = DEFAULT_API_PATHNAME_PREFIX

    try:
        if backend == "s3":
            return BlobStoreConfig(
                backend="s3",
                s3=S3BackendConfig(
                    bucket=_get_env_str(ENV_S3_BUCKET) or DEFAULT_BUCKET,
                    object_name_prefix=_get_env_str(ENV_S3_PREFIX) or DEFAULT_OBJECT_NAME_PREFIX,
                    region=_get_env_str(ENV_S3_REGION) or _get_env_str("AWS_REGION"),
                    endpoint_url=_get_env_str(ENV_S3_ENDPOINT_URL),
                    multipart_part_size=_parse_positive_int(ENV_S3_PART_SIZE, DEFAULT_PART_SIZE),
                ),
                api_pathname_prefix=api_prefix,
            )

        return BlobStoreConfig(
            backend="filesystem",
            filesystem=FilesystemBackendConfig(
                root_directory=Path(_get_env_str(ENV_FS_ROOT) or Path.cwd() / "blobs"),
                directory_cache_capacity=_parse_positive_int(
                    ENV_DIR_CACHE_CAPACITY, DEFAULT_DIRECTORY_CACHE_CAPACITY
                ),
            ),
            api_pathname_prefix=api_prefix,
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid blob store configuration: {e}") from e
