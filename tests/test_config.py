"""Tests for blob store configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from blobstore.config import (
    DEFAULT_API_PATHNAME_PREFIX,
    BlobStoreConfig,
    FilesystemBackendConfig,
    S3BackendConfig,
    load_blob_store_config,
)
from blobstore.storage.errors import ConfigError
from blobstore.storage.s3_store import DEFAULT_BUCKET, DEFAULT_PART_SIZE, MIN_PART_SIZE
from blobstore.store import create_backend

CONFIG_ENV_VARS = (
    "BLOBSTORE_BACKEND",
    "BLOBSTORE_FS_ROOT",
    "BLOBSTORE_DIR_CACHE_CAPACITY",
    "BLOBSTORE_S3_BUCKET",
    "BLOBSTORE_S3_PREFIX",
    "BLOBSTORE_S3_REGION",
    "BLOBSTORE_S3_ENDPOINT_URL",
    "BLOBSTORE_S3_PART_SIZE",
    "BLOBSTORE_API_PATHNAME_PREFIX",
    "AWS_REGION",
)


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in CONFIG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class TestLoadFilesystemConfig:
    """Tests for the filesystem backend loaded from the environment."""

    def test_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)

        config = load_blob_store_config()

        assert config.backend == "filesystem"
        assert config.filesystem is not None
        assert config.filesystem.root_directory == tmp_path / "blobs"
        assert config.filesystem.directory_cache_capacity == 100
        assert config.s3 is None
        assert config.api_pathname_prefix == DEFAULT_API_PATHNAME_PREFIX

    def test_explicit_values(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_BACKEND", "FILESYSTEM")
        monkeypatch.setenv("BLOBSTORE_FS_ROOT", str(tmp_path / "data"))
        monkeypatch.setenv("BLOBSTORE_DIR_CACHE_CAPACITY", "12")
        monkeypatch.setenv("BLOBSTORE_API_PATHNAME_PREFIX", "/api/encoding/")

        config = load_blob_store_config()

        assert config.filesystem is not None
        assert config.filesystem.root_directory == tmp_path / "data"
        assert config.filesystem.directory_cache_capacity == 12
        assert config.api_pathname_prefix == "/api/encoding/"

    @pytest.mark.parametrize("value", ["zero", "0", "-4", "1.5"])
    def test_bad_cache_capacity(self, value: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_DIR_CACHE_CAPACITY", value)

        with pytest.raises(ConfigError, match="BLOBSTORE_DIR_CACHE_CAPACITY"):
            load_blob_store_config()


class TestLoadS3Config:
    """Tests for the S3 backend loaded from the environment."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_BACKEND", "s3")

        config = load_blob_store_config()

        assert config.backend == "s3"
        assert config.s3 is not None
        assert config.s3.bucket == DEFAULT_BUCKET
        assert config.s3.object_name_prefix == "blob"
        assert config.s3.multipart_part_size == DEFAULT_PART_SIZE
        assert config.s3.region is None
        assert config.filesystem is None

    def test_explicit_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_BACKEND", "s3")
        monkeypatch.setenv("BLOBSTORE_S3_BUCKET", "team-blobs")
        monkeypatch.setenv("BLOBSTORE_S3_PREFIX", "env/prod")
        monkeypatch.setenv("BLOBSTORE_S3_REGION", "eu-west-1")
        monkeypatch.setenv("BLOBSTORE_S3_ENDPOINT_URL", "http://localhost:9000")
        monkeypatch.setenv("BLOBSTORE_S3_PART_SIZE", str(MIN_PART_SIZE * 2))

        config = load_blob_store_config()

        assert config.s3 == S3BackendConfig(
            bucket="team-blobs",
            object_name_prefix="env/prod",
            region="eu-west-1",
            endpoint_url="http://localhost:9000",
            multipart_part_size=MIN_PART_SIZE * 2,
        )

    def test_region_falls_back_to_aws_region(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_BACKEND", "s3")
        monkeypatch.setenv("AWS_REGION", "us-east-2")

        config = load_blob_store_config()

        assert config.s3 is not None
        assert config.s3.region == "us-east-2"

    def test_part_size_below_minimum(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_BACKEND", "s3")
        monkeypatch.setenv("BLOBSTORE_S3_PART_SIZE", "1024")

        with pytest.raises(ConfigError, match="Invalid blob store configuration"):
            load_blob_store_config()

    def test_bad_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_BACKEND", "s3")
        monkeypatch.setenv("BLOBSTORE_S3_PREFIX", "a//b")

        with pytest.raises(ConfigError):
            load_blob_store_config()


class TestBackendChoice:
    """Tests for the closed set of backends."""

    def test_unknown_backend_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_BACKEND", "azure")

        with pytest.raises(ConfigError, match="azure"):
            load_blob_store_config()

    def test_unknown_backend_in_model(self) -> None:
        with pytest.raises(ValidationError):
            BlobStoreConfig(backend="azure")  # type: ignore[arg-type]

    def test_missing_section(self) -> None:
        with pytest.raises(ValidationError, match="requires an s3 section"):
            BlobStoreConfig(backend="s3")

    def test_extra_fields_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationError):
            FilesystemBackendConfig(root_directory=tmp_path, colour="red")  # type: ignore[call-arg]

    def test_create_backend_rejects_unvalidated_section(self) -> None:
        config = BlobStoreConfig.model_construct(backend="filesystem", filesystem=None)

        with pytest.raises(ConfigError, match="filesystem section"):
            create_backend(config)

    def test_config_error_is_blob_store_error(self) -> None:
        from blobstore.storage.errors import BlobStoreError

        assert issubclass(ConfigError, BlobStoreError)
