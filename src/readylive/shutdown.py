"""
Graceful shutdown coordination for wrapped HTTP servers.

Handles signal registration, the readiness flip, the wait before shutdown
and the bounded graceful close with forced-close fallback.

This module provides:
- ShutdownPhase: Enum of shutdown phases
- ShutdownReason: Enum of what triggered the shutdown
- GraceEnd: Enum of what ended the wait before shutdown
- ShutdownResult: Result of a shutdown operation
- ShutdownCoordinator: Drives a server from serving to closed

The shutdown sequence:
1. Report not ready (if the readiness handler supports it)
2. Keep serving for ``wait_before_shutdown`` seconds, so that health-check
   pollers stop routing traffic here. The wait ends early if the listener
   stops, the caller's timeout expires, or cancellation is requested.
3. Gracefully shut the server down within ``shutdown_timeout`` seconds,
   counted from the end of step 2
4. Close the server forcefully if step 3 runs out of time

Example:
    >>> coordinator = ShutdownCoordinator(wait_before_shutdown=15.0, shutdown_timeout=5.0)
    >>> coordinator.register_signals()
    >>> await coordinator.wait_for_shutdown()
    >>> result = await coordinator.shutdown(server, ready_handler, listen_result)
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from readylive.exceptions import DeadlineExceededError
from readylive.observability import (
    ATTR_ERROR_TYPE,
    ATTR_GRACE_ENDED_BY,
    ATTR_GRACE_SECONDS,
    ATTR_SHUTDOWN_FORCED,
    ATTR_SHUTDOWN_PHASE,
    ATTR_SHUTDOWN_READINESS_FLIPPED,
    ATTR_SHUTDOWN_REASON,
    ATTR_TIMEOUT_SECONDS,
    Tracer,
    create_tracer,
)
from readylive.readiness import SettableReadiness

if TYPE_CHECKING:
    from readylive.server import HTTPServer

logger = logging.getLogger(__name__)


class ShutdownPhase(Enum):
    """
    Phases of graceful shutdown.

    The shutdown sequence follows these phases:
    1. SERVING: Listening, no shutdown requested
    2. DRAINING_ANNOUNCED: Readiness reported false
    3. DRAINING_GRACE: Waiting for pollers to notice
    4. CLOSING: Graceful close in progress (forced close on timeout)
    5. CLOSED: Server closed

    FAILED_TO_START is reached instead when the listener had already
    failed by the time shutdown looked at it.
    """

    SERVING = "serving"
    DRAINING_ANNOUNCED = "draining_announced"
    DRAINING_GRACE = "draining_grace"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED_TO_START = "failed_to_start"


class ShutdownReason(Enum):
    """What triggered the shutdown sequence."""

    SIGNAL_SIGTERM = "signal_sigterm"
    """Shutdown triggered by SIGTERM (Kubernetes, container orchestrators)."""

    SIGNAL_SIGINT = "signal_sigint"
    """Shutdown triggered by SIGINT (Ctrl+C)."""

    PROGRAMMATIC = "programmatic"
    """Shutdown triggered by application code."""

    DOUBLE_SIGNAL = "double_signal"
    """Wait before shutdown cut short by a second termination signal."""


class GraceEnd(Enum):
    """What ended the wait before shutdown."""

    LISTENER_STOPPED = "listener_stopped"
    GRACE_ELAPSED = "grace_elapsed"
    DEADLINE = "deadline"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ShutdownResult:
    """
    Result of a shutdown operation.

    Attributes:
        phase: Final shutdown phase reached
        duration_seconds: Total shutdown duration in seconds
        grace_seconds: Time actually spent in the wait before shutdown
        forced: True if the server had to be closed forcefully
        reason: The reason that triggered the shutdown
        grace_ended_by: What ended the wait before shutdown
        readiness_flipped: True if the readiness handler was set to not ready
    """

    phase: ShutdownPhase
    duration_seconds: float
    grace_seconds: float = 0.0
    forced: bool = False
    reason: ShutdownReason | None = None
    grace_ended_by: GraceEnd | None = None
    readiness_flipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation of result
        """
        return {
            "phase": self.phase.value,
            "duration_seconds": self.duration_seconds,
            "grace_seconds": self.grace_seconds,
            "forced": self.forced,
            "reason": self.reason.value if self.reason else None,
            "grace_ended_by": self.grace_ended_by.value if self.grace_ended_by else None,
            "readiness_flipped": self.readiness_flipped,
        }


@dataclass
class ShutdownCoordinator:
    """
    Coordinates graceful shutdown of a wrapped HTTP server.

    Handles:
    - Signal registration (SIGTERM, SIGINT)
    - Readiness flip before the wait before shutdown
    - Racing the wait against listener termination and the caller's deadline
    - Bounded graceful close with forced-close fallback

    A second signal cuts the wait before shutdown short; the graceful
    close still gets its full ``shutdown_timeout``.

    Attributes:
        wait_before_shutdown: Seconds to report not ready before closing
        shutdown_timeout: Seconds allowed for graceful close after the wait
        tracer: Tracer for shutdown spans (None = created from OTEL availability)
    """

    wait_before_shutdown: float = 15.0
    """Seconds to report not ready before closing."""

    shutdown_timeout: float = 5.0
    """Seconds allowed for in-flight requests once the wait has ended."""

    tracer: Tracer | None = None

    # Internal state
    _phase: ShutdownPhase = field(default=ShutdownPhase.SERVING, repr=False)
    _shutdown_requested: bool = field(default=False, repr=False)
    _shutdown_reason: ShutdownReason | None = field(default=None, repr=False)
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _force_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _signal_handlers_registered: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        if self.tracer is None:
            self.tracer = create_tracer(__name__)

    # -- signals -------------------------------------------------------------

    def register_signals(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """
        Register signal handlers for graceful shutdown.

        The first SIGTERM or SIGINT requests shutdown; a second one ends
        the wait before shutdown immediately.

        Args:
            loop: Event loop to register handlers on. Defaults to the
                  running event loop.
        """
        if self._signal_handlers_registered:
            logger.warning("Signal handlers already registered")
            return

        loop = loop or asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
                logger.debug("Registered signal handler", extra={"signal": sig.name})
            except NotImplementedError:
                # Windows doesn't fully support add_signal_handler
                logger.warning(
                    "Signal handling not fully supported on this platform",
                    extra={"signal": sig.name},
                )

        self._signal_handlers_registered = True
        logger.info("Shutdown signal handlers registered")

    def unregister_signals(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """
        Remove the SIGTERM and SIGINT handlers installed by register_signals().

        Args:
            loop: Event loop to unregister handlers from. Defaults to
                  the running event loop.
        """
        if not self._signal_handlers_registered:
            return

        loop = loop or asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, ValueError):
                pass

        self._signal_handlers_registered = False
        logger.info("Shutdown signal handlers unregistered")

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            logger.warning(
                "Received second shutdown signal, ending wait before shutdown",
                extra={"signal": sig.name, "current_phase": self._phase.value},
            )
            self._shutdown_reason = ShutdownReason.DOUBLE_SIGNAL
            self._force_event.set()
            return

        if sig == signal.SIGTERM:
            self._shutdown_reason = ShutdownReason.SIGNAL_SIGTERM
        else:
            self._shutdown_reason = ShutdownReason.SIGNAL_SIGINT

        logger.info(
            "Received shutdown signal, initiating graceful shutdown",
            extra={
                "signal": sig.name,
                "wait_before_shutdown": self.wait_before_shutdown,
                "shutdown_timeout": self.shutdown_timeout,
            },
        )
        self._shutdown_requested = True
        self._shutdown_event.set()

    def request_shutdown(self, reason: ShutdownReason = ShutdownReason.PROGRAMMATIC) -> None:
        """
        Programmatically request shutdown.

        Wakes up wait_for_shutdown() exactly as a signal would. Has no
        effect if shutdown was already requested.

        Args:
            reason: The reason for shutdown. Defaults to PROGRAMMATIC.
        """
        if not self._shutdown_requested:
            self._shutdown_reason = reason
            logger.info("Programmatic shutdown requested", extra={"reason": reason.value})
            self._shutdown_requested = True
            self._shutdown_event.set()

    async def wait_for_shutdown(self) -> None:
        """Block until a shutdown signal arrives or request_shutdown() is called."""
        await self._shutdown_event.wait()

    # -- state ---------------------------------------------------------------

    @property
    def phase(self) -> ShutdownPhase:
        return self._phase

    @property
    def is_shutting_down(self) -> bool:
        """True once shutdown has been requested or started."""
        return self._shutdown_requested

    @property
    def reason(self) -> ShutdownReason | None:
        return self._shutdown_reason

    def _set_phase(self, phase: ShutdownPhase) -> None:
        previous = self._phase
        self._phase = phase
        logger.info(
            "Shutdown phase changed",
            extra={"from_phase": previous.value, "to_phase": phase.value},
        )

    # -- shutdown sequence ---------------------------------------------------

    async def shutdown(
        self,
        server: HTTPServer,
        readiness: object,
        listen_result: asyncio.Future[None],
        *,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ShutdownResult:
        """
        Drive the server from serving to closed.

        Args:
            server: Server to shut down
            readiness: Configured readiness handler; flipped to not ready
                if it implements SettableReadiness, skipped otherwise
            listen_result: One-shot future completed by the listen task
            timeout: Caller's deadline in seconds (None = unbounded). Only
                shortens the wait before shutdown.
            cancel: Event that ends the wait before shutdown when set

        Returns:
            ShutdownResult describing how the server stopped

        Raises:
            Exception: The listener's start-up error if it had already
                failed, the forced close error, or any graceful-close
                error other than a timeout
        """
        loop = asyncio.get_running_loop()
        start = loop.time()
        self._shutdown_requested = True
        self._shutdown_event.set()
        reason = self._shutdown_reason or ShutdownReason.PROGRAMMATIC

        assert self.tracer is not None
        with self.tracer.span(
            "readylive.shutdown",
            {ATTR_SHUTDOWN_REASON: reason.value},
        ) as span:
            if listen_result.done():
                return self._finish_early(listen_result, reason, start, grace_seconds=0.0)

            flipped = self._announce(readiness)

            grace_start = loop.time()
            self._set_phase(ShutdownPhase.DRAINING_GRACE)
            with self.tracer.span(
                "readylive.shutdown.grace",
                {ATTR_GRACE_SECONDS: self.wait_before_shutdown},
            ):
                ended_by = await self._wait_grace(listen_result, timeout, cancel)
            grace_seconds = loop.time() - grace_start

            if span is not None:
                span.set_attribute(ATTR_GRACE_ENDED_BY, ended_by.value)
                span.set_attribute(ATTR_SHUTDOWN_READINESS_FLIPPED, flipped)

            logger.info(
                "Wait before shutdown ended",
                extra={"ended_by": ended_by.value, "grace_seconds": grace_seconds},
            )

            if ended_by is GraceEnd.LISTENER_STOPPED:
                return self._finish_early(
                    listen_result, reason, start, grace_seconds=grace_seconds, flipped=flipped
                )

            self._set_phase(ShutdownPhase.CLOSING)
            forced = await self._close(server)
            self._set_phase(ShutdownPhase.CLOSED)
            if span is not None:
                span.set_attribute(ATTR_SHUTDOWN_PHASE, ShutdownPhase.CLOSED.value)
                span.set_attribute(ATTR_SHUTDOWN_FORCED, forced)

            result = ShutdownResult(
                phase=ShutdownPhase.CLOSED,
                duration_seconds=loop.time() - start,
                grace_seconds=grace_seconds,
                forced=forced,
                reason=reason,
                grace_ended_by=ended_by,
                readiness_flipped=flipped,
            )
            logger.info("Shutdown complete", extra=result.to_dict())
            return result

    def _announce(self, readiness: object) -> bool:
        if not isinstance(readiness, SettableReadiness):
            logger.debug(
                "Readiness handler cannot be set, skipping readiness flip",
                extra={"handler": type(readiness).__name__},
            )
            return False

        readiness.set_ready(False)
        self._set_phase(ShutdownPhase.DRAINING_ANNOUNCED)
        return True

    async def _wait_grace(
        self,
        listen_result: asyncio.Future[None],
        timeout: float | None,
        cancel: asyncio.Event | None,
    ) -> GraceEnd:
        wait = self.wait_before_shutdown
        deadline_first = timeout is not None and timeout < wait
        if timeout is not None:
            wait = min(wait, timeout)

        waiters: set[asyncio.Future[Any]] = {listen_result}
        cancel_waiters: list[asyncio.Future[Any]] = []
        for event in (cancel, self._force_event):
            if event is not None:
                waiter = asyncio.ensure_future(event.wait())
                cancel_waiters.append(waiter)
                waiters.add(waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=max(wait, 0.0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in cancel_waiters:
                if not waiter.done():
                    waiter.cancel()

        if listen_result in done:
            return GraceEnd.LISTENER_STOPPED
        if any(waiter in done for waiter in cancel_waiters):
            return GraceEnd.CANCELLED
        if deadline_first:
            return GraceEnd.DEADLINE
        return GraceEnd.GRACE_ELAPSED

    async def _close(self, server: HTTPServer) -> bool:
        """Close the server gracefully; returns True if it had to be forced."""
        assert self.tracer is not None
        bound = self.shutdown_timeout

        with self.tracer.span("readylive.shutdown.close", {ATTR_TIMEOUT_SECONDS: bound}) as span:
            deadline = asyncio.timeout(bound)
            try:
                async with deadline:
                    await server.shutdown(bound)
                return False
            except TimeoutError as e:
                # Only the closing bound forces a close; other timeouts are server errors.
                if not isinstance(e, DeadlineExceededError) and not deadline.expired():
                    self._close_failed(e, span)
                    raise
                logger.warning(
                    "Graceful shutdown exceeded its timeout, closing forcefully",
                    extra={"shutdown_timeout": bound},
                )
                if span is not None:
                    span.set_attribute(ATTR_SHUTDOWN_FORCED, True)
            except Exception as e:
                self._close_failed(e, span)
                raise

        with self.tracer.span("readylive.shutdown.force_close", {ATTR_SHUTDOWN_FORCED: True}):
            await server.close()
        return True

    def _close_failed(self, error: BaseException, span: Any) -> None:
        logger.error(
            "Graceful shutdown failed",
            extra={"error": str(error)},
            exc_info=True,
        )
        if span is not None:
            span.set_attribute(ATTR_ERROR_TYPE, type(error).__name__)

    def _finish_early(
        self,
        listen_result: asyncio.Future[None],
        reason: ShutdownReason,
        start: float,
        *,
        grace_seconds: float,
        flipped: bool = False,
    ) -> ShutdownResult:
        error = None if listen_result.cancelled() else listen_result.exception()
        if error is not None:
            self._set_phase(ShutdownPhase.FAILED_TO_START)
            logger.error(
                "Server stopped before shutdown, returning its error",
                extra={"error": str(error), "phase": self._phase.value},
            )
            raise error

        self._set_phase(ShutdownPhase.CLOSED)
        logger.info("Server already stopped, nothing to close")
        return ShutdownResult(
            phase=ShutdownPhase.CLOSED,
            duration_seconds=asyncio.get_running_loop().time() - start,
            grace_seconds=grace_seconds,
            reason=reason,
            grace_ended_by=GraceEnd.LISTENER_STOPPED,
            readiness_flipped=flipped,
        )


__all__ = [
    "GraceEnd",
    "ShutdownCoordinator",
    "ShutdownPhase",
    "ShutdownReason",
    "ShutdownResult",
]
