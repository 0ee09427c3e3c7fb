"""
Readiness and liveness flags exposed as aiohttp handlers.

This module provides:
- Handler: Type alias for aiohttp request handlers
- SettableReadiness: Capability protocol for handlers that can be toggled
- ReadinessHandler: Lock-guarded boolean served as 200 / 503

Example:
    >>> flag = ReadinessHandler()
    >>> flag.set_ready(False)
    >>> isinstance(flag, SettableReadiness)
    True
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from aiohttp import web

logger = logging.getLogger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@runtime_checkable
class SettableReadiness(Protocol):
    """
    Capability of a handler that can be told whether it is ready.

    Any handler may implement ``set_ready``; the shutdown sequence checks
    for it with ``isinstance`` and skips the readiness flip when it is
    missing.
    """

    def set_ready(self, ready: bool) -> None:
        """Set whether the handler reports ready."""
        ...


class ReadinessHandler:
    """
    Boolean flag served over HTTP.

    Responds 200 while the flag is set and 503 (Service Unavailable)
    otherwise, always with an empty body. Reads and writes are serialized
    by a lock, so the flag may be flipped from any thread.

    Used both as the default readiness handler and, as a separate
    instance, as the default liveness handler.

    Args:
        ready: Initial state of the flag
    """

    def __init__(self, ready: bool = True) -> None:
        self._lock = threading.Lock()
        self._ready = ready

    def set_ready(self, ready: bool) -> None:
        with self._lock:
            self._ready = ready
        logger.debug("Readiness flag set", extra={"ready": ready})

    @property
    def ready(self) -> bool:
        with self._lock:
            return self._ready

    async def __call__(self, request: web.Request) -> web.Response:
        with self._lock:
            if self._ready:
                return web.Response(status=200)
            return web.Response(status=503)

    def __repr__(self) -> str:
        return f"ReadinessHandler(ready={self.ready})"


__all__ = [
    "Handler",
    "SettableReadiness",
    "ReadinessHandler",
]
