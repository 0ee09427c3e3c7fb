"""
Span attribute names used by readylive.

Keeping them in one place keeps span attributes consistent between the
shutdown coordinator and anything that asserts on them.
"""

ATTR_SHUTDOWN_REASON = "readylive.shutdown.reason"
ATTR_SHUTDOWN_PHASE = "readylive.shutdown.phase"
ATTR_SHUTDOWN_FORCED = "readylive.shutdown.forced"
ATTR_SHUTDOWN_READINESS_FLIPPED = "readylive.shutdown.readiness_flipped"
ATTR_GRACE_SECONDS = "readylive.shutdown.grace_seconds"
ATTR_GRACE_ENDED_BY = "readylive.shutdown.grace_ended_by"
ATTR_TIMEOUT_SECONDS = "readylive.shutdown.timeout_seconds"

ATTR_ERROR_TYPE = "error.type"

__all__ = [
    "ATTR_ERROR_TYPE",
    "ATTR_GRACE_ENDED_BY",
    "ATTR_GRACE_SECONDS",
    "ATTR_SHUTDOWN_FORCED",
    "ATTR_SHUTDOWN_PHASE",
    "ATTR_SHUTDOWN_READINESS_FLIPPED",
    "ATTR_SHUTDOWN_REASON",
    "ATTR_TIMEOUT_SECONDS",
]
