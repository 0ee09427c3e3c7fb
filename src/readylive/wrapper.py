"""
Readiness and liveness endpoints around an HTTP server.

WrappedServer owns a server, its configuration and the one-shot future
carrying the outcome of the background listen task. It installs the
health-endpoint dispatcher in front of the application handler when it
starts listening, and delegates shutdown to a ShutdownCoordinator.

Example:
    >>> server = AiohttpServer(handler=app_handler, port=8080)
    >>> wrapped = wrap_server(server, wait_before_shutdown(10.0))
    >>> wrapped.listen_and_serve()
    >>> ...
    >>> result = await wrapped.shutdown(timeout=30.0)
"""

from __future__ import annotations

import asyncio
import logging

from readylive.config import ServerConfig, ServerOption, apply_options
from readylive.exceptions import ServerStateError
from readylive.mux import PathMux, bind_health_routes
from readylive.readiness import Handler, SettableReadiness
from readylive.server import HTTPServer
from readylive.shutdown import ShutdownCoordinator, ShutdownPhase, ShutdownResult

logger = logging.getLogger(__name__)


class WrappedServer:
    """
    HTTP server with readiness and liveness check endpoints.

    Once wrapped, the underlying server should not be modified directly:
    its handler is replaced by the health-endpoint dispatcher when
    listen_and_serve() is called.

    Args:
        server: Server to wrap
        config: Configuration; missing health handlers are filled with
            independent default flags
    """

    def __init__(self, server: HTTPServer, config: ServerConfig | None = None) -> None:
        self._server = server
        self._config = (config or ServerConfig()).with_defaults()
        self._coordinator = ShutdownCoordinator(
            wait_before_shutdown=self._config.wait_before_shutdown,
            shutdown_timeout=self._config.shutdown_timeout,
            tracer=self._config.tracer,
        )
        self._mux: PathMux | None = None
        self._listen_result: asyncio.Future[None] | None = None
        self._listen_task: asyncio.Task[None] | None = None

    @property
    def server(self) -> HTTPServer:
        return self._server

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def coordinator(self) -> ShutdownCoordinator:
        return self._coordinator

    @property
    def phase(self) -> ShutdownPhase:
        """Current phase of the shutdown sequence."""
        return self._coordinator.phase

    @property
    def ready_handler(self) -> Handler:
        assert self._config.ready_handler is not None
        return self._config.ready_handler

    @property
    def alive_handler(self) -> Handler:
        assert self._config.alive_handler is not None
        return self._config.alive_handler

    @property
    def listening(self) -> bool:
        """True while the background listen task is running."""
        return self._listen_result is not None and not self._listen_result.done()

    def set_ready(self, ready: bool) -> bool:
        """
        Set the readiness flag, if the readiness handler supports it.

        Returns:
            True if the handler was updated, False if it cannot be set
        """
        return _set_flag(self.ready_handler, ready)

    def set_alive(self, alive: bool) -> bool:
        """
        Set the liveness flag, if the liveness handler supports it.

        Returns:
            True if the handler was updated, False if it cannot be set
        """
        return _set_flag(self.alive_handler, alive)

    def listen_and_serve(self) -> None:
        """
        Start the server in its own task.

        Installs the health-endpoint dispatcher as the server's handler and
        runs ``server.listen()`` in the background. Must be called from a
        running event loop. Calling it twice is not supported.
        """
        self._mux = bind_health_routes(self._config, self._server.handler)
        self._server.handler = self._mux

        loop = asyncio.get_running_loop()
        self._listen_result = loop.create_future()
        # Listener errors are logged by _serve and need not be awaited
        self._listen_result.add_done_callback(_mark_retrieved)
        self._listen_task = loop.create_task(self._serve(self._listen_result))

        logger.info(
            "Listening with health endpoints",
            extra={
                "ready_path": self._config.ready_path,
                "alive_path": self._config.alive_path,
            },
        )

    async def _serve(self, result: asyncio.Future[None]) -> None:
        try:
            await self._server.listen()
        except asyncio.CancelledError:
            result.cancel()
            raise
        except Exception as e:
            logger.error(
                "Server listen failed",
                extra={"error": str(e)},
                exc_info=True,
            )
            result.set_exception(e)
        else:
            result.set_result(None)

    def _require_listening(self) -> asyncio.Future[None]:
        if self._listen_result is None:
            raise ServerStateError("listen_and_serve() has not been called")
        return self._listen_result

    async def shutdown(
        self,
        timeout: float | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> ShutdownResult:
        """
        Shut the server down gracefully.

        Reports not ready, waits ``wait_before_shutdown`` seconds, then
        shuts the server down within ``shutdown_timeout`` seconds, closing
        it forcefully if requests are still running.

        Args:
            timeout: Caller's deadline in seconds (None = unbounded). It can
                cut the wait before shutdown short but not the closing phase.
            cancel: Event that ends the wait before shutdown when set

        Returns:
            ShutdownResult describing how the server stopped

        Raises:
            ServerStateError: If listen_and_serve() was never called
            Exception: Any error returned by the underlying server
        """
        listen_result = self._require_listening()
        return await self._coordinator.shutdown(
            self._server,
            self.ready_handler,
            listen_result,
            timeout=timeout,
            cancel=cancel,
        )

    async def wait_closed(self) -> None:
        """
        Wait for the background listen task to finish.

        Raises:
            ServerStateError: If listen_and_serve() was never called
            Exception: The listener's error, if it failed
        """
        await asyncio.shield(self._require_listening())

    def request_shutdown(self) -> None:
        """Wake up serve_until_signalled() as if a signal had been received."""
        self._coordinator.request_shutdown()

    def register_signals(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Let SIGTERM/SIGINT request shutdown; a second signal ends the wait early."""
        self._coordinator.register_signals(loop)

    def unregister_signals(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._coordinator.unregister_signals(loop)

    async def serve_until_signalled(self, timeout: float | None = None) -> ShutdownResult:
        """
        Serve until a termination signal arrives, then shut down.

        Starts listening, registers signal handlers and waits for the first
        of a shutdown request or the listener stopping on its own.

        Args:
            timeout: Caller's deadline for the shutdown, see shutdown()

        Returns:
            ShutdownResult of the shutdown
        """
        self.listen_and_serve()
        listen_result = self._require_listening()
        self.register_signals()
        try:
            requested = asyncio.ensure_future(self._coordinator.wait_for_shutdown())
            try:
                await asyncio.wait(
                    {requested, listen_result},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                requested.cancel()
            return await self.shutdown(timeout)
        finally:
            self.unregister_signals()


def _mark_retrieved(result: asyncio.Future[None]) -> None:
    if not result.cancelled():
        result.exception()


def _set_flag(handler: Handler, value: bool) -> bool:
    if isinstance(handler, SettableReadiness):
        handler.set_ready(value)
        return True
    return False


def wrap_server(server: HTTPServer, *options: ServerOption) -> WrappedServer:
    """
    Attach readiness and liveness handlers to server.

    Without options the server serves default readiness and liveness
    checks on '/ready' and '/health'. On shutdown it reports not ready for
    15 seconds, then gives ongoing requests another 5 seconds before
    closing forcefully.

    Args:
        server: Server to wrap; it should not be modified directly afterwards
        *options: Options from readylive.config, applied in order

    Returns:
        WrappedServer controlling server
    """
    return WrappedServer(server, apply_options(ServerConfig(), options))


__all__ = [
    "WrappedServer",
    "wrap_server",
]
