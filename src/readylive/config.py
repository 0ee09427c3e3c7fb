"""
Configuration for wrapped servers.

This module provides:
- ServerConfig: Paths, handlers and timing for the health endpoints and shutdown
- ServerOption: Type alias for option callables accepted by wrap_server()
- Option factories: with_ready_path, with_ready_handler, with_alive_path,
  with_alive_handler, wait_before_shutdown, shutdown_timeout, with_tracer
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from readylive.exceptions import ServerConfigError
from readylive.readiness import Handler, ReadinessHandler

if TYPE_CHECKING:
    from readylive.observability import Tracer

DEFAULT_READY_PATH = "/ready"
DEFAULT_ALIVE_PATH = "/health"
DEFAULT_WAIT_BEFORE_SHUTDOWN = 15.0
DEFAULT_SHUTDOWN_TIMEOUT = 5.0


@dataclass(frozen=True)
class ServerConfig:
    """
    Configuration for a wrapped server.

    Immutable: options produce modified copies, and the resolved config is
    fixed once the server is wrapped.

    Attributes:
        ready_path: Path serving the readiness check
        ready_handler: Handler for the readiness check (None = default flag)
        alive_path: Path serving the liveness check
        alive_handler: Handler for the liveness check (None = default flag)
        wait_before_shutdown: Seconds to keep serving after readiness is
            reported false, so pollers notice before the listener closes
        shutdown_timeout: Seconds given to in-flight requests once the wait
            before shutdown ends; afterwards the server is closed forcefully
        tracer: Tracer for shutdown spans (None = created from OTEL availability)

    Example:
        >>> config = ServerConfig.from_options(
        ...     with_ready_path("/readyz"),
        ...     wait_before_shutdown(1.0),
        ... )
        >>> config.ready_path
        '/readyz'
    """

    ready_path: str = DEFAULT_READY_PATH
    ready_handler: Handler | None = None
    alive_path: str = DEFAULT_ALIVE_PATH
    alive_handler: Handler | None = None

    # Timeouts
    wait_before_shutdown: float = DEFAULT_WAIT_BEFORE_SHUTDOWN
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT

    tracer: Tracer | None = None

    def __post_init__(self) -> None:
        """Validate configuration values."""
        for name in ("ready_path", "alive_path"):
            path = getattr(self, name)
            if not isinstance(path, str) or not path.startswith("/"):
                raise ServerConfigError(
                    f"{name} must be a string starting with '/', got {path!r}. "
                    f"Use a value like '{DEFAULT_READY_PATH}' or '{DEFAULT_ALIVE_PATH}'."
                )

        for name in ("ready_handler", "alive_handler"):
            handler = getattr(self, name)
            if handler is not None and not callable(handler):
                raise ServerConfigError(f"{name} must be callable, got {type(handler).__name__}.")

        if self.wait_before_shutdown < 0:
            raise ServerConfigError(
                f"wait_before_shutdown must be >= 0, got {self.wait_before_shutdown}. "
                "Use a value like 15.0 (default) seconds."
            )

        if self.shutdown_timeout < 0:
            raise ServerConfigError(
                f"shutdown_timeout must be >= 0, got {self.shutdown_timeout}. "
                "Use a value like 5.0 (default) seconds."
            )

    @classmethod
    def from_options(cls, *options: ServerOption) -> ServerConfig:
        """
        Build a configuration by applying options to the defaults in order.

        Args:
            *options: Option callables, later ones override earlier ones

        Returns:
            The resulting ServerConfig
        """
        return apply_options(cls(), options)

    def with_defaults(self) -> ServerConfig:
        """
        Fill in the default readiness and liveness handlers.

        Each missing handler gets its own ReadinessHandler instance, so
        flipping readiness never affects liveness.

        Returns:
            Config with both handlers set
        """
        ready_handler = self.ready_handler
        if ready_handler is None:
            ready_handler = ReadinessHandler(ready=True)
        alive_handler = self.alive_handler
        if alive_handler is None:
            alive_handler = ReadinessHandler(ready=True)
        return dataclasses.replace(self, ready_handler=ready_handler, alive_handler=alive_handler)


ServerOption = Callable[[ServerConfig], ServerConfig]


def apply_options(config: ServerConfig, options: Iterable[ServerOption]) -> ServerConfig:
    """Apply options to config in order and return the result."""
    for option in options:
        config = option(config)
    return config


def with_ready_path(path: str) -> ServerOption:
    """Set the readiness check path."""

    def option(config: ServerConfig) -> ServerConfig:
        return dataclasses.replace(config, ready_path=path)

    return option


def with_ready_handler(handler: Handler) -> ServerOption:
    """
    Set the handler for the readiness check.

    If the handler implements ``set_ready``, shutdown flips it to not
    ready before the wait before shutdown starts.
    """

    def option(config: ServerConfig) -> ServerConfig:
        return dataclasses.replace(config, ready_handler=handler)

    return option


def with_alive_path(path: str) -> ServerOption:
    """Set the liveness check path."""

    def option(config: ServerConfig) -> ServerConfig:
        return dataclasses.replace(config, alive_path=path)

    return option


def with_alive_handler(handler: Handler) -> ServerOption:
    """Set the handler for the liveness check."""

    def option(config: ServerConfig) -> ServerConfig:
        return dataclasses.replace(config, alive_handler=handler)

    return option


def wait_before_shutdown(seconds: float) -> ServerOption:
    """
    Set how long the server reports not ready before shutting down.

    Args:
        seconds: Duration of the grace period in seconds
    """

    def option(config: ServerConfig) -> ServerConfig:
        return dataclasses.replace(config, wait_before_shutdown=seconds)

    return option


def shutdown_timeout(seconds: float) -> ServerOption:
    """
    Set how long ongoing requests may run before the server is closed.

    The timeout starts counting once the wait before shutdown has ended.

    Args:
        seconds: Bound on graceful shutdown in seconds
    """

    def option(config: ServerConfig) -> ServerConfig:
        return dataclasses.replace(config, shutdown_timeout=seconds)

    return option


def with_tracer(tracer: Tracer) -> ServerOption:
    """Set the tracer used for shutdown spans."""

    def option(config: ServerConfig) -> ServerConfig:
        return dataclasses.replace(config, tracer=tracer)

    return option


__all__ = [
    "DEFAULT_ALIVE_PATH",
    "DEFAULT_READY_PATH",
    "DEFAULT_SHUTDOWN_TIMEOUT",
    "DEFAULT_WAIT_BEFORE_SHUTDOWN",
    "ServerConfig",
    "ServerOption",
    "apply_options",
    "shutdown_timeout",
    "wait_before_shutdown",
    "with_alive_handler",
    "with_alive_path",
    "with_ready_handler",
    "with_ready_path",
    "with_tracer",
]
