"""
Observability utilities for readylive.

Provides a small composition-based tracing layer over OpenTelemetry and
the span attribute names used by the shutdown coordinator.

Note:
    OpenTelemetry is an optional dependency. Install ``readylive-py[telemetry]``
    to get real spans; without it every tracer is a no-op.
"""

from readylive.observability.attributes import (
    ATTR_ERROR_TYPE,
    ATTR_GRACE_ENDED_BY,
    ATTR_GRACE_SECONDS,
    ATTR_SHUTDOWN_FORCED,
    ATTR_SHUTDOWN_PHASE,
    ATTR_SHUTDOWN_READINESS_FLIPPED,
    ATTR_SHUTDOWN_REASON,
    ATTR_TIMEOUT_SECONDS,
)
from readylive.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from readylive.observability.tracing import OTEL_AVAILABLE

__all__ = [
    # Availability
    "OTEL_AVAILABLE",
    # Tracers
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_ERROR_TYPE",
    "ATTR_GRACE_ENDED_BY",
    "ATTR_GRACE_SECONDS",
    "ATTR_SHUTDOWN_FORCED",
    "ATTR_SHUTDOWN_PHASE",
    "ATTR_SHUTDOWN_READINESS_FLIPPED",
    "ATTR_SHUTDOWN_REASON",
    "ATTR_TIMEOUT_SECONDS",
]
