"""
OpenTelemetry availability for readylive.

OpenTelemetry is optional; everything in readylive.observability falls
back to no-op tracing when it is not installed.
"""

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry import trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


__all__ = [
    "OTEL_AVAILABLE",
]
