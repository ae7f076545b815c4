"""Tests for the blobstore OpenTelemetry tracing baseline.

- Tracing OFF by default, ON via BLOBSTORE_OTEL_ENABLED=1
- Fail-closed only when BLOBSTORE_REQUIRE_OTEL=1 and init fails
- Storage spans carry hashed keys, never raw key components
- Tests use the in-memory exporter (no external collector required)
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from unittest.mock import patch

import pytest

from blobstore.observability import tracing
from blobstore.observability.tracing import (
    TracingConfigError,
    TracingSettings,
    configure_tracing,
    get_test_spans,
    is_tracing_enabled,
)
from blobstore.storage.models import BlobKey, WriteOptions
from blobstore.storage.s3_store import S3BlobBackend
from conftest import TEST_BUCKET


class TestTracingConfiguration:
    """Tests for tracing configuration behavior."""

    def test_tracing_disabled_by_default(self) -> None:
        """Tracing should be OFF when BLOBSTORE_OTEL_ENABLED is not set."""
        assert is_tracing_enabled() is False
        assert configure_tracing() is False
        assert get_test_spans() == []

    def test_tracing_enabled_with_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_OTEL_ENABLED", "1")
        monkeypatch.setenv("BLOBSTORE_OTEL_TEST_CAPTURE", "1")

        assert configure_tracing() is True

    def test_tracing_idempotent(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_OTEL_ENABLED", "1")
        monkeypatch.setenv("BLOBSTORE_OTEL_TEST_CAPTURE", "1")

        assert configure_tracing() == configure_tracing()

    @pytest.mark.parametrize("value", ["0", "false", "no", "maybe"])
    def test_non_true_values_disable(self, value: str, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_OTEL_ENABLED", value)

        assert is_tracing_enabled() is False

    def test_require_otel_fails_closed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """BLOBSTORE_REQUIRE_OTEL=1 should fail if tracing init fails."""
        monkeypatch.setenv("BLOBSTORE_OTEL_ENABLED", "1")
        monkeypatch.setenv("BLOBSTORE_REQUIRE_OTEL", "1")
        monkeypatch.setattr(tracing, "_tracer_provider", None)
        monkeypatch.setattr(tracing, "_test_exporter", None)

        with patch(
            "opentelemetry.sdk.trace.TracerProvider",
            side_effect=Exception("Simulated init failure"),
        ):
            with pytest.raises(TracingConfigError) as exc_info:
                configure_tracing()

        assert "configuration failed" in str(exc_info.value).lower()

    def test_init_failure_without_require_returns_false(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("BLOBSTORE_OTEL_ENABLED", "1")
        monkeypatch.setattr(tracing, "_tracer_provider", None)
        monkeypatch.setattr(tracing, "_test_exporter", None)

        with patch(
            "opentelemetry.sdk.trace.TracerProvider",
            side_effect=Exception("Simulated init failure"),
        ):
            assert configure_tracing() is False

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BLOBSTORE_OTEL_ENABLED", "true")
        monkeypatch.setenv("BLOBSTORE_OTEL_SERVICE_NAME", "blob-api")
        monkeypatch.setenv("BLOBSTORE_OTEL_EXPORTER", "Console")
        monkeypatch.setenv("BLOBSTORE_OTEL_RESOURCE_ATTRS", "env=dev")

        settings = TracingSettings.from_env()

        assert settings == TracingSettings(
            enabled=True,
            service_name="blob-api",
            exporter="console",
            resource_attrs={"env": "dev"},
        )

    def test_resource_attrs_parsing(self) -> None:
        attrs = tracing._parse_resource_attrs("env=dev, team = storage,broken,")

        assert attrs == {"env": "dev", "team": "storage"}


class TestS3Spans:
    """Tests for spans emitted by the S3 backend."""

    def test_write_span_hashes_key(
        self, s3_backend: S3BlobBackend, enable_tracing: Callable[[], None]
    ) -> None:
        enable_tracing()

        writer, _handle = s3_backend.open_write(
            BlobKey("g", "r", "e"), WriteOptions(content_type="text/plain")
        )
        with writer:
            writer.write(b"abc" * 1000)

        span = next(s for s in get_test_spans() if s.name == "blobstore.storage.open_write")
        attrs = dict(span.attributes or {})
        assert attrs["storage.backend"] == "s3"
        assert attrs["blobstore.key_sha256"] == hashlib.sha256(b"g/r/e").hexdigest()
        assert TEST_BUCKET not in " ".join(str(value) for value in attrs.values())

    def test_missing_object_delete_span(
        self, s3_backend: S3BlobBackend, enable_tracing: Callable[[], None]
    ) -> None:
        enable_tracing()

        assert s3_backend.remove(BlobKey("g", "r", "missing")) == []

        span = next(s for s in get_test_spans() if s.name == "blobstore.storage.remove")
        assert span.attributes["blobstore.removed_count"] == 0
