"""blobstore observability module.

Provides the OpenTelemetry tracing baseline.
"""

from blobstore.observability.tracing import configure_tracing, is_tracing_enabled

__all__ = ["configure_tracing", "is_tracing_enabled"]
