"""
Path dispatching for health endpoints.

PathMux routes requests by path in the manner of a classic HTTP serve mux:
a pattern without a trailing slash matches that exact path, a pattern with
a trailing slash matches the whole subtree below it, and the longest
matching subtree wins. ``/`` therefore acts as the catch-all.

Registering the same pattern twice replaces the earlier handler. Collisions
between the health paths and the application's own paths are not checked;
whichever is registered last wins.

A subtree pattern does not match its own path without the trailing slash:
with only ``/x/`` and ``/`` registered, a request for ``/x`` goes to ``/``.
There is no redirect to ``/x/``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from aiohttp import web

from readylive.readiness import Handler

if TYPE_CHECKING:
    from readylive.config import ServerConfig

logger = logging.getLogger(__name__)


class PathMux:
    """
    Request dispatcher selecting a handler by request path.

    Example:
        >>> mux = PathMux()
        >>> mux.handle("/ready", ready_handler)
        >>> mux.handle("/", app_handler)
        >>> mux.match("/ready") is ready_handler
        True
    """

    def __init__(self) -> None:
        self._exact: dict[str, Handler] = {}
        self._subtrees: dict[str, Handler] = {}

    def handle(self, pattern: str, handler: Handler) -> None:
        """
        Register handler for pattern.

        Args:
            pattern: Absolute path; a trailing slash makes it a subtree pattern
            handler: aiohttp handler to dispatch to

        Raises:
            ValueError: If pattern does not start with '/'
        """
        if not pattern.startswith("/"):
            raise ValueError(f"Pattern must start with '/', got {pattern!r}")

        routes = self._subtrees if pattern.endswith("/") else self._exact
        if pattern in routes:
            logger.debug("Replacing handler for pattern", extra={"pattern": pattern})
        routes[pattern] = handler

    def match(self, path: str) -> Handler | None:
        """
        Find the handler for path.

        Returns:
            The matching handler, or None if no pattern matches
        """
        handler = self._exact.get(path)
        if handler is not None:
            return handler

        best: str | None = None
        for pattern in self._subtrees:
            if path.startswith(pattern) and (best is None or len(pattern) > len(best)):
                best = pattern
        return self._subtrees[best] if best is not None else None

    @property
    def patterns(self) -> list[str]:
        """All registered patterns."""
        return [*self._exact, *self._subtrees]

    async def __call__(self, request: web.Request) -> web.StreamResponse:
        handler = self.match(request.path)
        if handler is None:
            raise web.HTTPNotFound()
        return await handler(request)


async def not_found(request: web.Request) -> web.StreamResponse:
    """Application handler answering 404 for every request."""
    raise web.HTTPNotFound()


def bind_health_routes(config: ServerConfig, app_handler: Handler | None) -> PathMux:
    """
    Build the dispatcher that fronts the application with health endpoints.

    Registers, in order, the readiness path, the liveness path and ``/``
    for the application handler. Missing health handlers are filled with
    independent default flags.

    Args:
        config: Server configuration
        app_handler: Original application handler (None = 404 for all paths)

    Returns:
        PathMux to install as the server's handler
    """
    config = config.with_defaults()
    assert config.ready_handler is not None and config.alive_handler is not None

    mux = PathMux()
    mux.handle(config.ready_path, config.ready_handler)
    mux.handle(config.alive_path, config.alive_handler)
    mux.handle("/", app_handler or not_found)

    logger.debug(
        "Bound health routes",
        extra={"ready_path": config.ready_path, "alive_path": config.alive_path},
    )
    return mux


__all__ = [
    "PathMux",
    "bind_health_routes",
    "not_found",
]
