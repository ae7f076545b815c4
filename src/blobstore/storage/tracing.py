"""Blob storage OpenTelemetry tracing integration.

Provides the tracing decorator applied to backend operations.

Security:
    - Never export absolute filesystem paths in span attributes
    - Never export raw key components; only their SHA-256 hash
"""

from __future__ import annotations

import functools
import hashlib
import logging
from collections.abc import Callable
from typing import Any, TypeVar, cast

from blobstore.observability.tracing import is_tracing_enabled
from blobstore.storage.models import BlobKey, WriteResult

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def traced_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator to trace backend operations with OpenTelemetry.

    Emits spans with safe attributes (hashed key, backend name, sizes).

    Args:
        operation: Operation name (e.g., "open_write", "open_read", "remove").

    Returns:
        Decorated function that emits OTel spans when tracing is enabled.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self: Any, key: BlobKey, *args: Any, **kwargs: Any) -> Any:
            if not is_tracing_enabled():
                return func(self, key, *args, **kwargs)

            from opentelemetry import trace

            tracer = trace.get_tracer("blobstore.storage")
            with tracer.start_as_current_span(f"blobstore.storage.{operation}") as span:
                # Key components may carry user identifiers; export only a hash.
                key_sha256 = hashlib.sha256(key.path.encode("utf-8")).hexdigest()
                span.set_attribute("blobstore.key_sha256", key_sha256)
                span.set_attribute("blobstore.key_depth", len(key.parts))
                span.set_attribute("storage.backend", getattr(self, "backend_name", "unknown"))

                try:
                    result = func(self, key, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

                _add_result_attributes(span, result)
                return result

        return cast(F, wrapper)

    return decorator


def _add_result_attributes(span: Any, result: Any) -> None:
    """Add result-based attributes to span safely.

    Only sizes, compression flags and counts are added; never storage keys.
    """
    try:
        if isinstance(result, WriteResult):
            span.set_attribute("blobstore.size_bytes", result.size)
            span.set_attribute("blobstore.compressed", result.compressed is not None)
            if result.compressed is not None:
                span.set_attribute("blobstore.compressed_size_bytes", result.compressed.size)
        elif isinstance(result, list):
            span.set_attribute("blobstore.removed_count", len(result))
    except Exception as e:
        logger.debug("Failed to add result attributes to span: %s", e)
