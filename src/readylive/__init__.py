"""
readylive - Readiness/liveness probes and graceful shutdown for aiohttp servers.

This library provides:
- Readiness and liveness endpoints served in front of an application handler
- A shutdown sequence that reports not ready, waits for traffic to move
  away, then drains in-flight requests with a forced-close fallback
- Signal handling for SIGTERM/SIGINT
- Optional OpenTelemetry tracing of the shutdown phases
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("readylive-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from readylive.config import (
    ServerConfig,
    ServerOption,
    shutdown_timeout,
    wait_before_shutdown,
    with_alive_handler,
    with_alive_path,
    with_ready_handler,
    with_ready_path,
    with_tracer,
)
from readylive.exceptions import (
    DeadlineExceededError,
    ReadyLiveError,
    ServerConfigError,
    ServerStateError,
)
from readylive.mux import PathMux, bind_health_routes
from readylive.readiness import Handler, ReadinessHandler, SettableReadiness
from readylive.server import AiohttpServer, HTTPServer
from readylive.shutdown import (
    GraceEnd,
    ShutdownCoordinator,
    ShutdownPhase,
    ShutdownReason,
    ShutdownResult,
)
from readylive.wrapper import WrappedServer, wrap_server

__all__ = [
    "__version__",
    # Wrapping
    "WrappedServer",
    "wrap_server",
    # Configuration
    "ServerConfig",
    "ServerOption",
    "shutdown_timeout",
    "wait_before_shutdown",
    "with_alive_handler",
    "with_alive_path",
    "with_ready_handler",
    "with_ready_path",
    "with_tracer",
    # Health endpoints
    "Handler",
    "PathMux",
    "ReadinessHandler",
    "SettableReadiness",
    "bind_health_routes",
    # Servers
    "AiohttpServer",
    "HTTPServer",
    # Shutdown
    "GraceEnd",
    "ShutdownCoordinator",
    "ShutdownPhase",
    "ShutdownReason",
    "ShutdownResult",
    # Exceptions
    "DeadlineExceededError",
    "ReadyLiveError",
    "ServerConfigError",
    "ServerStateError",
]
