"""
HTTP server collaborators.

This module provides:
- HTTPServer: Protocol of the server a WrappedServer drives
- AiohttpServer: HTTPServer implementation on aiohttp's AppRunner/TCPSite

The protocol has three primitives: ``listen()`` blocks until the server is
closed (raising on start-up failure), ``shutdown(timeout)`` stops accepting
connections and waits for in-flight requests (raising DeadlineExceededError
when the bound is hit), and ``close()`` tears everything down immediately.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

from aiohttp import web

from readylive.exceptions import DeadlineExceededError, ServerStateError
from readylive.mux import not_found
from readylive.readiness import Handler

logger = logging.getLogger(__name__)


@runtime_checkable
class HTTPServer(Protocol):
    """
    Protocol for servers that can be wrapped with health endpoints.

    ``handler`` is replaced once, when the wrapped server starts listening,
    and must not be changed afterwards.
    """

    handler: Handler | None

    async def listen(self) -> None:
        """
        Serve until closed.

        Returns normally once the server is shut down or closed.

        Raises:
            Exception: If the server fails to start (e.g. OSError on bind)
        """
        ...

    async def shutdown(self, timeout: float) -> None:
        """
        Stop accepting connections and wait for in-flight requests.

        Args:
            timeout: Seconds to wait for in-flight requests

        Raises:
            DeadlineExceededError: If requests are still in flight after timeout
        """
        ...

    async def close(self) -> None:
        """Close the listener and all connections without waiting."""
        ...


class AiohttpServer:
    """
    aiohttp-based HTTP server with in-flight request tracking.

    Every request is routed through a single catch-all route to
    ``handler``. The server counts requests in flight so that graceful
    shutdown can wait for them to drain, and keeps their tasks so that a
    forced close can cancel them.

    Args:
        handler: Application handler (None = 404 for every path)
        host: Interface to bind
        port: TCP port to bind
        **site_kwargs: Extra keyword arguments for aiohttp.web.TCPSite

    Example:
        >>> server = AiohttpServer(handler=my_handler, host="0.0.0.0", port=8080)
        >>> await server.listen()  # blocks until shutdown()/close()
    """

    def __init__(
        self,
        handler: Handler | None = None,
        host: str = "127.0.0.1",
        port: int = 8080,
        **site_kwargs: Any,
    ) -> None:
        self.handler = handler
        self.host = host
        self.port = port
        self._site_kwargs = site_kwargs

        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started = asyncio.Event()
        self._closed = asyncio.Event()

        self._in_flight: set[asyncio.Task[Any]] = set()
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Initially set (no requests in flight)
        self._shutting_down = False

    @property
    def in_flight(self) -> int:
        """Number of requests currently being handled."""
        return len(self._in_flight)

    @property
    def started(self) -> bool:
        """Whether the listener has been bound."""
        return self._started.is_set()

    @property
    def closed(self) -> bool:
        """Whether the server has been shut down or closed."""
        return self._closed.is_set()

    async def wait_started(self) -> None:
        """Wait until the listener is bound."""
        await self._started.wait()

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self._dispatch)
        return app

    async def _dispatch(self, request: web.Request) -> web.StreamResponse:
        task = asyncio.current_task()
        assert task is not None
        self._in_flight.add(task)
        self._drain_event.clear()
        try:
            handler = self.handler or not_found
            response = await handler(request)
            if self._shutting_down:
                # Keep-alive ends once shutdown has started
                response.force_close()
            return response
        finally:
            self._in_flight.discard(task)
            if not self._in_flight:
                self._drain_event.set()

    async def listen(self) -> None:
        if self._runner is not None:
            raise ServerStateError("Server is already listening")

        self._runner = web.AppRunner(self._build_app(), handle_signals=False)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port, **self._site_kwargs)
        try:
            await self._site.start()
        except Exception:
            await self._runner.cleanup()
            raise

        self._started.set()
        logger.info("Server listening", extra={"host": self.host, "port": self.port})

        await self._closed.wait()
        logger.info("Server closed", extra={"host": self.host, "port": self.port})

    async def _stop_listening(self) -> None:
        if self._site is not None:
            await self._site.stop()
            self._site = None

    async def _wait_for_drain(self, timeout: float) -> int:
        if not self._in_flight:
            return 0

        logger.debug(
            "Waiting for drain",
            extra={"in_flight": self.in_flight, "timeout": timeout},
        )
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            return self.in_flight
        return 0

    async def shutdown(self, timeout: float) -> None:
        """
        Stop accepting connections and wait for in-flight requests.

        Idle keep-alive connections are closed at once; connections with a
        request in flight are closed after their response.

        Raises:
            DeadlineExceededError: If requests are still in flight after timeout
        """
        self._shutting_down = True
        if self._runner is None:
            self._closed.set()
            return

        await self._stop_listening()
        if self._runner.server is not None:
            self._runner.server.pre_shutdown()

        remaining = await self._wait_for_drain(timeout)
        if remaining:
            raise DeadlineExceededError(timeout, in_flight=remaining)

        await self._runner.cleanup()
        self._closed.set()

    async def close(self) -> None:
        """Cancel in-flight requests and close every connection."""
        await self._stop_listening()

        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            logger.warning("Cancelled in-flight requests", extra={"count": len(tasks)})
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._runner is not None:
            await self._runner.cleanup()
        self._closed.set()


__all__ = [
    "HTTPServer",
    "AiohttpServer",
]
