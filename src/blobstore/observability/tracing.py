"""OpenTelemetry tracing setup for blobstore.

Tracing is off unless BLOBSTORE_OTEL_ENABLED is set. Backend operations
check ``is_tracing_enabled()`` on every call, so spans are emitted only after
``configure_tracing()`` installed a provider.

Environment Variables:
    BLOBSTORE_OTEL_ENABLED: Set to "1" to enable tracing (default: disabled)
    BLOBSTORE_REQUIRE_OTEL: Set to "1" to fail if tracing cannot initialize
    BLOBSTORE_OTEL_SERVICE_NAME: Service name for spans (default: "blobstore")
    BLOBSTORE_OTEL_EXPORTER: "otlp" or "console" (default: "otlp")
    BLOBSTORE_OTEL_EXPORTER_OTLP_ENDPOINT: OTLP endpoint URL (optional)
    BLOBSTORE_OTEL_EXPORTER_OTLP_PROTOCOL: "grpc" or "http" (default: "grpc")
    BLOBSTORE_OTEL_RESOURCE_ATTRS: Comma-separated k=v resource attributes
    BLOBSTORE_OTEL_TEST_CAPTURE: Set to "1" to capture spans in memory (tests)

The OTLP exporters ship in the optional ``otlp`` extra.
"""

from __future__ import annotations

import importlib
import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from opentelemetry.sdk.trace import ReadableSpan, TracerProvider

logger = logging.getLogger(__name__)

ENABLED_ENV: Final[str] = "BLOBSTORE_OTEL_ENABLED"
REQUIRE_ENV: Final[str] = "BLOBSTORE_REQUIRE_OTEL"
SERVICE_NAME_ENV: Final[str] = "BLOBSTORE_OTEL_SERVICE_NAME"
EXPORTER_ENV: Final[str] = "BLOBSTORE_OTEL_EXPORTER"
OTLP_ENDPOINT_ENV: Final[str] = "BLOBSTORE_OTEL_EXPORTER_OTLP_ENDPOINT"
OTLP_PROTOCOL_ENV: Final[str] = "BLOBSTORE_OTEL_EXPORTER_OTLP_PROTOCOL"
RESOURCE_ATTRS_ENV: Final[str] = "BLOBSTORE_OTEL_RESOURCE_ATTRS"
TEST_CAPTURE_ENV: Final[str] = "BLOBSTORE_OTEL_TEST_CAPTURE"

_TRUE_VALUES: Final[frozenset[str]] = frozenset({"1", "true", "yes"})

_tracer_provider: TracerProvider | None = None
_test_exporter: Any = None  # InMemorySpanExporter once test capture was configured


class TracingConfigError(Exception):
    """Raised when tracing configuration fails and BLOBSTORE_REQUIRE_OTEL=1."""


def _env_flag(key: str) -> bool:
    return os.environ.get(key, "").strip().lower() in _TRUE_VALUES


def _env_str(key: str, default: str = "") -> str:
    return os.environ.get(key, "").strip() or default


def _parse_resource_attrs(attrs_str: str) -> dict[str, str]:
    """Parse comma-separated k=v resource attributes, skipping malformed pairs."""
    result: dict[str, str] = {}
    for pair in attrs_str.split(","):
        name, sep, value = pair.partition("=")
        if sep and name.strip():
            result[name.strip()] = value.strip()
    return result


@dataclass(frozen=True)
class TracingSettings:
    """Tracing settings read from the environment."""

    enabled: bool = False
    required: bool = False
    test_capture: bool = False
    service_name: str = "blobstore"
    exporter: str = "otlp"
    otlp_endpoint: str | None = None
    otlp_protocol: str = "grpc"
    resource_attrs: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> TracingSettings:
        return cls(
            enabled=_env_flag(ENABLED_ENV),
            required=_env_flag(REQUIRE_ENV),
            test_capture=_env_flag(TEST_CAPTURE_ENV),
            service_name=_env_str(SERVICE_NAME_ENV, "blobstore"),
            exporter=_env_str(EXPORTER_ENV, "otlp").lower(),
            otlp_endpoint=_env_str(OTLP_ENDPOINT_ENV) or None,
            otlp_protocol=_env_str(OTLP_PROTOCOL_ENV, "grpc").lower(),
            resource_attrs=_parse_resource_attrs(_env_str(RESOURCE_ATTRS_ENV)),
        )


def is_tracing_enabled() -> bool:
    """Return True if BLOBSTORE_OTEL_ENABLED is set."""
    return _env_flag(ENABLED_ENV)


def _span_processor(settings: TracingSettings) -> Any:
    """Build the span processor for the configured exporter."""
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor

    global _test_exporter

    if settings.test_capture:
        from opentelemetry.sdk.trace.export.in_memory_span_exporter import (
            InMemorySpanExporter,
        )

        _test_exporter = InMemorySpanExporter()
        return SimpleSpanProcessor(_test_exporter)

    if settings.exporter == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        return SimpleSpanProcessor(ConsoleSpanExporter())

    kwargs: dict[str, Any] = {}
    if settings.otlp_endpoint:
        kwargs["endpoint"] = settings.otlp_endpoint
    protocol = "http" if settings.otlp_protocol == "http" else "grpc"
    otlp = importlib.import_module(f"opentelemetry.exporter.otlp.proto.{protocol}.trace_exporter")
    return BatchSpanProcessor(otlp.OTLPSpanExporter(**kwargs))


def configure_tracing(settings: TracingSettings | None = None) -> bool:
    """Install the tracer provider described by the environment.

    Idempotent: once a provider is installed, later calls return True without
    touching it (OpenTelemetry allows one global provider per process).

    Args:
        settings: Settings to use instead of reading the environment.

    Returns:
        True if tracing is enabled and configured, False otherwise.

    Raises:
        TracingConfigError: If tracing is required and configuration fails.
    """
    global _tracer_provider

    settings = settings or TracingSettings.from_env()
    if not settings.enabled:
        logger.debug("OpenTelemetry tracing disabled (%s not set)", ENABLED_ENV)
        return False

    if _tracer_provider is not None:
        return True

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider

        attributes = {"service.name": settings.service_name, **settings.resource_attrs}
        provider = TracerProvider(resource=Resource.create(attributes))
        provider.add_span_processor(_span_processor(settings))
        trace.set_tracer_provider(provider)
        _tracer_provider = provider
    except Exception as e:
        logger.error("Failed to configure OpenTelemetry tracing: %s", e)
        if settings.required:
            raise TracingConfigError(
                f"OpenTelemetry tracing required but configuration failed: {e}"
            ) from e
        return False

    logger.info(
        "OpenTelemetry tracing configured: service=%s exporter=%s",
        settings.service_name,
        "in-memory" if settings.test_capture else settings.exporter,
    )
    return True


def get_test_spans() -> list[ReadableSpan]:
    """Return spans captured by the in-memory exporter (empty without test capture)."""
    if _test_exporter is None:
        return []
    return list(_test_exporter.get_finished_spans())


def clear_test_spans() -> None:
    if _test_exporter is not None:
        _test_exporter.clear()


def reset_tracing() -> None:
    """Clear captured spans between tests.

    The global TracerProvider cannot be replaced once set, so the provider and
    its in-memory exporter are kept.
    """
    clear_test_spans()
