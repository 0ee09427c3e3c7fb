"""
Unit tests for graceful shutdown coordination.

Tests for:
- ShutdownPhase / ShutdownReason / GraceEnd enums
- ShutdownResult dataclass
- ShutdownCoordinator readiness flip, wait before shutdown and closing
- Signal handling
"""

import asyncio
import os
import signal
import sys

import pytest

from readylive.exceptions import DeadlineExceededError
from readylive.observability import MockTracer
from readylive.readiness import ReadinessHandler
from readylive.shutdown import (
    GraceEnd,
    ShutdownCoordinator,
    ShutdownPhase,
    ShutdownReason,
    ShutdownResult,
)
from tests.fixtures import FakeServer, PlainHealthHandler

# Small durations keep the suite fast; SLACK absorbs timer jitter.
SLACK = 0.02


async def start_listening(server: FakeServer) -> tuple[asyncio.Future[None], asyncio.Task[None]]:
    """Run server.listen() in the background, completing a one-shot future."""
    loop = asyncio.get_running_loop()
    result: asyncio.Future[None] = loop.create_future()

    async def serve() -> None:
        try:
            await server.listen()
        except Exception as e:
            result.set_exception(e)
        else:
            result.set_result(None)

    task = loop.create_task(serve())
    await asyncio.sleep(0)
    return result, task


class TestShutdownEnums:
    """Tests for shutdown enums."""

    def test_phase_values(self):
        assert ShutdownPhase.SERVING.value == "serving"
        assert ShutdownPhase.DRAINING_ANNOUNCED.value == "draining_announced"
        assert ShutdownPhase.DRAINING_GRACE.value == "draining_grace"
        assert ShutdownPhase.CLOSING.value == "closing"
        assert ShutdownPhase.CLOSED.value == "closed"
        assert ShutdownPhase.FAILED_TO_START.value == "failed_to_start"

    def test_all_phases_exist(self):
        assert len(list(ShutdownPhase)) == 6

    def test_reason_values(self):
        assert ShutdownReason.SIGNAL_SIGTERM.value == "signal_sigterm"
        assert ShutdownReason.SIGNAL_SIGINT.value == "signal_sigint"
        assert ShutdownReason.PROGRAMMATIC.value == "programmatic"
        assert ShutdownReason.DOUBLE_SIGNAL.value == "double_signal"

    def test_grace_end_values(self):
        assert {e.value for e in GraceEnd} == {
            "listener_stopped",
            "grace_elapsed",
            "deadline",
            "cancelled",
        }


class TestShutdownResult:
    """Tests for ShutdownResult."""

    def test_defaults(self):
        result = ShutdownResult(phase=ShutdownPhase.CLOSED, duration_seconds=1.0)
        assert result.forced is False
        assert result.reason is None
        assert result.grace_ended_by is None
        assert result.readiness_flipped is False

    def test_to_dict(self):
        result = ShutdownResult(
            phase=ShutdownPhase.CLOSED,
            duration_seconds=2.5,
            grace_seconds=2.0,
            forced=True,
            reason=ShutdownReason.SIGNAL_SIGTERM,
            grace_ended_by=GraceEnd.GRACE_ELAPSED,
            readiness_flipped=True,
        )

        assert result.to_dict() == {
            "phase": "closed",
            "duration_seconds": 2.5,
            "grace_seconds": 2.0,
            "forced": True,
            "reason": "signal_sigterm",
            "grace_ended_by": "grace_elapsed",
            "readiness_flipped": True,
        }

    def test_to_dict_none_values(self):
        result = ShutdownResult(phase=ShutdownPhase.CLOSED, duration_seconds=0.0)
        data = result.to_dict()
        assert data["reason"] is None
        assert data["grace_ended_by"] is None

    def test_is_frozen(self):
        result = ShutdownResult(phase=ShutdownPhase.CLOSED, duration_seconds=0.0)
        with pytest.raises(AttributeError):
            result.forced = True  # type: ignore[misc]


class TestCoordinatorDefaults:
    """Tests for ShutdownCoordinator construction."""

    def test_default_timing(self):
        coordinator = ShutdownCoordinator()
        assert coordinator.wait_before_shutdown == 15.0
        assert coordinator.shutdown_timeout == 5.0

    def test_initial_state(self):
        coordinator = ShutdownCoordinator()
        assert coordinator.phase == ShutdownPhase.SERVING
        assert coordinator.is_shutting_down is False
        assert coordinator.reason is None

    def test_tracer_created_when_missing(self):
        coordinator = ShutdownCoordinator()
        assert coordinator.tracer is not None

    def test_explicit_tracer_kept(self, mock_tracer):
        coordinator = ShutdownCoordinator(tracer=mock_tracer)
        assert coordinator.tracer is mock_tracer


class TestReadinessFlip:
    """Tests for the readiness announcement."""

    @pytest.mark.asyncio
    async def test_readiness_false_before_grace_wait(self, fake_server):
        """Test readiness is reported false while the wait is in progress."""
        readiness = ReadinessHandler()
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.2, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)

        task = asyncio.create_task(coordinator.shutdown(fake_server, readiness, listen_result))
        await asyncio.sleep(0.05)

        assert readiness.ready is False
        assert coordinator.phase == ShutdownPhase.DRAINING_GRACE
        assert fake_server.call_names == ["listen"]

        result = await task
        assert result.readiness_flipped is True

    @pytest.mark.asyncio
    async def test_handler_without_capability_is_skipped(self, fake_server):
        """Test a readiness handler without set_ready does not block shutdown."""
        readiness = PlainHealthHandler()
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.05, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)

        result = await asyncio.wait_for(
            coordinator.shutdown(fake_server, readiness, listen_result), timeout=2.0
        )

        assert result.phase == ShutdownPhase.CLOSED
        assert result.readiness_flipped is False
        assert result.grace_ended_by == GraceEnd.GRACE_ELAPSED
        assert fake_server.call_names == ["listen", "shutdown"]

    @pytest.mark.asyncio
    async def test_function_handler_is_skipped(self, fake_server):
        async def ready(request):
            return None

        coordinator = ShutdownCoordinator(wait_before_shutdown=0.0, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)

        result = await coordinator.shutdown(fake_server, ready, listen_result)

        assert result.readiness_flipped is False
        assert result.phase == ShutdownPhase.CLOSED


class TestGraceWait:
    """Tests for the wait before shutdown race."""

    @pytest.mark.asyncio
    async def test_graceful_close_waits_for_grace_period(self, fake_server):
        """Test graceful close starts no earlier than the wait before shutdown."""
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.2, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)
        loop = asyncio.get_running_loop()

        started = loop.time()
        result = await coordinator.shutdown(fake_server, ReadinessHandler(), listen_result)

        assert fake_server.call_time("shutdown") - started >= 0.2 - SLACK
        assert result.grace_ended_by == GraceEnd.GRACE_ELAPSED
        assert result.grace_seconds >= 0.2 - SLACK

    @pytest.mark.asyncio
    async def test_caller_deadline_shortens_grace(self, fake_server):
        """Test graceful close starts at the caller's deadline when it comes first."""
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)
        loop = asyncio.get_running_loop()

        started = loop.time()
        result = await coordinator.shutdown(
            fake_server, ReadinessHandler(), listen_result, timeout=0.1
        )
        elapsed = fake_server.call_time("shutdown") - started

        assert 0.1 - SLACK <= elapsed < 1.0
        assert result.grace_ended_by == GraceEnd.DEADLINE
        assert result.phase == ShutdownPhase.CLOSED

    @pytest.mark.asyncio
    async def test_longer_deadline_does_not_extend_grace(self, fake_server):
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.05, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)

        result = await coordinator.shutdown(
            fake_server, ReadinessHandler(), listen_result, timeout=10.0
        )

        assert result.grace_ended_by == GraceEnd.GRACE_ELAPSED
        assert result.duration_seconds < 5.0

    @pytest.mark.asyncio
    async def test_closing_bound_counts_from_end_of_grace(self, fake_server):
        """Test an expired caller deadline does not shrink the closing bound."""
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0, shutdown_timeout=0.75)
        listen_result, _ = await start_listening(fake_server)

        await coordinator.shutdown(fake_server, ReadinessHandler(), listen_result, timeout=0.05)

        assert fake_server.shutdown_timeouts == [0.75]

    @pytest.mark.asyncio
    async def test_cancel_event_ends_grace(self, fake_server):
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)
        cancel = asyncio.Event()

        task = asyncio.create_task(
            coordinator.shutdown(fake_server, ReadinessHandler(), listen_result, cancel=cancel)
        )
        await asyncio.sleep(0.05)
        cancel.set()
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.grace_ended_by == GraceEnd.CANCELLED
        assert fake_server.call_names == ["listen", "shutdown"]

    @pytest.mark.asyncio
    async def test_listener_stopping_short_circuits(self, fake_server):
        """Test a listener that stops during the wait skips the closing phase."""
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)

        task = asyncio.create_task(
            coordinator.shutdown(fake_server, ReadinessHandler(), listen_result)
        )
        await asyncio.sleep(0.05)
        fake_server.stop()
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.grace_ended_by == GraceEnd.LISTENER_STOPPED
        assert result.phase == ShutdownPhase.CLOSED
        assert result.readiness_flipped is True
        assert "shutdown" not in fake_server.call_names

    @pytest.mark.asyncio
    async def test_listener_failing_during_grace_raises_its_error(self):
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0, shutdown_timeout=1.0)
        loop = asyncio.get_running_loop()
        listen_result: asyncio.Future[None] = loop.create_future()
        server = FakeServer()

        loop.call_later(0.05, listen_result.set_exception, OSError("listener broke"))

        with pytest.raises(OSError, match="listener broke"):
            await asyncio.wait_for(
                coordinator.shutdown(server, ReadinessHandler(), listen_result), timeout=2.0
            )
        assert coordinator.phase == ShutdownPhase.FAILED_TO_START
        assert server.call_names == []


class TestFailedToStart:
    """Tests for shutdown after the listener already failed."""

    @pytest.mark.asyncio
    async def test_returns_start_up_error_immediately(self):
        """Test the start-up error is raised without flipping or waiting."""
        server = FakeServer(start_error=OSError("address already in use"))
        readiness = ReadinessHandler()
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0, shutdown_timeout=1.0)
        listen_result, task = await start_listening(server)
        await task

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(OSError, match="address already in use"):
            await coordinator.shutdown(server, readiness, listen_result)

        assert loop.time() - started < 1.0
        assert readiness.ready is True
        assert coordinator.phase == ShutdownPhase.FAILED_TO_START
        assert server.call_names == ["listen"]

    @pytest.mark.asyncio
    async def test_listener_closed_normally_returns_closed(self, fake_server):
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0, shutdown_timeout=1.0)
        listen_result, task = await start_listening(fake_server)
        fake_server.stop()
        await task

        result = await coordinator.shutdown(fake_server, ReadinessHandler(), listen_result)

        assert result.phase == ShutdownPhase.CLOSED
        assert result.grace_ended_by == GraceEnd.LISTENER_STOPPED
        assert result.readiness_flipped is False

    @pytest.mark.asyncio
    async def test_cancelled_listener_returns_closed(self, fake_server):
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0)
        listen_result: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        listen_result.cancel()

        result = await coordinator.shutdown(fake_server, ReadinessHandler(), listen_result)

        assert result.phase == ShutdownPhase.CLOSED


class TestClosing:
    """Tests for the graceful close and forced close fallback."""

    @pytest.mark.asyncio
    async def test_graceful_close_success(self, fake_server):
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.0, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)

        result = await coordinator.shutdown(fake_server, ReadinessHandler(), listen_result)

        assert result.forced is False
        assert result.phase == ShutdownPhase.CLOSED
        assert coordinator.phase == ShutdownPhase.CLOSED
        assert fake_server.call_names == ["listen", "shutdown"]
        assert fake_server.shutdown_timeouts == [1.0]

    @pytest.mark.asyncio
    async def test_stuck_requests_are_force_closed(self):
        """Test exceeding the bound force-closes and reports the forced outcome."""
        server = FakeServer(hang_on_shutdown=True)
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.0, shutdown_timeout=0.1)
        listen_result, _ = await start_listening(server)

        result = await asyncio.wait_for(
            coordinator.shutdown(server, ReadinessHandler(), listen_result), timeout=2.0
        )

        assert result.forced is True
        assert result.phase == ShutdownPhase.CLOSED
        assert server.call_names == ["listen", "shutdown", "close"]
        assert server.call_time("close") - server.call_time("shutdown") >= 0.1 - SLACK

    @pytest.mark.asyncio
    async def test_deadline_error_from_server_triggers_forced_close(self):
        """Test a DeadlineExceededError from the server is handled like the bound."""
        server = FakeServer(shutdown_error=DeadlineExceededError(0.1, in_flight=2))
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.0, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(server)

        result = await coordinator.shutdown(server, ReadinessHandler(), listen_result)

        assert result.forced is True
        assert server.call_names == ["listen", "shutdown", "close"]

    @pytest.mark.asyncio
    async def test_forced_close_error_propagates(self):
        """Test the forced close outcome replaces the deadline error."""
        server = FakeServer(hang_on_shutdown=True, close_error=RuntimeError("close failed"))
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.0, shutdown_timeout=0.05)
        listen_result, _ = await start_listening(server)

        with pytest.raises(RuntimeError, match="close failed"):
            await coordinator.shutdown(server, ReadinessHandler(), listen_result)

    @pytest.mark.asyncio
    async def test_other_shutdown_errors_propagate_without_forcing(self):
        server = FakeServer(shutdown_error=ConnectionResetError("boom"))
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.0, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(server)

        with pytest.raises(ConnectionResetError, match="boom"):
            await coordinator.shutdown(server, ReadinessHandler(), listen_result)

        assert "close" not in server.call_names
        assert coordinator.phase == ShutdownPhase.CLOSING

    @pytest.mark.asyncio
    async def test_unrelated_timeout_error_propagates_without_forcing(self):
        """Test a TimeoutError raised before the bound is not mistaken for it."""
        server = FakeServer(shutdown_error=TimeoutError("upstream socket timed out"))
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.0, shutdown_timeout=5.0)
        listen_result, _ = await start_listening(server)

        with pytest.raises(TimeoutError, match="upstream socket timed out"):
            await coordinator.shutdown(server, ReadinessHandler(), listen_result)

        assert "close" not in server.call_names
        assert coordinator.phase == ShutdownPhase.CLOSING

    @pytest.mark.asyncio
    async def test_zero_timeout_forces_close(self):
        server = FakeServer(hang_on_shutdown=True)
        coordinator = ShutdownCoordinator(wait_before_shutdown=0.0, shutdown_timeout=0.0)
        listen_result, _ = await start_listening(server)

        result = await asyncio.wait_for(
            coordinator.shutdown(server, ReadinessHandler(), listen_result), timeout=2.0
        )

        assert result.forced is True


class TestTracing:
    """Tests for shutdown spans."""

    @pytest.mark.asyncio
    async def test_spans_for_normal_shutdown(self, fake_server, mock_tracer):
        coordinator = ShutdownCoordinator(
            wait_before_shutdown=0.0, shutdown_timeout=1.0, tracer=mock_tracer
        )
        listen_result, _ = await start_listening(fake_server)

        await coordinator.shutdown(fake_server, ReadinessHandler(), listen_result)

        assert mock_tracer.span_names == [
            "readylive.shutdown",
            "readylive.shutdown.grace",
            "readylive.shutdown.close",
        ]
        _, attributes = mock_tracer.spans[0]
        assert attributes == {"readylive.shutdown.reason": "programmatic"}

    @pytest.mark.asyncio
    async def test_span_for_forced_close(self, mock_tracer):
        server = FakeServer(hang_on_shutdown=True)
        coordinator = ShutdownCoordinator(
            wait_before_shutdown=0.0, shutdown_timeout=0.05, tracer=mock_tracer
        )
        listen_result, _ = await start_listening(server)

        await coordinator.shutdown(server, ReadinessHandler(), listen_result)

        assert mock_tracer.span_names[-1] == "readylive.shutdown.force_close"


class TestSignals:
    """Tests for signal handling and shutdown requests."""

    def test_request_shutdown_sets_reason(self):
        coordinator = ShutdownCoordinator()
        coordinator.request_shutdown()
        assert coordinator.is_shutting_down is True
        assert coordinator.reason == ShutdownReason.PROGRAMMATIC

    def test_request_shutdown_only_once(self):
        coordinator = ShutdownCoordinator()
        coordinator.request_shutdown()
        coordinator.request_shutdown(ShutdownReason.SIGNAL_SIGINT)
        assert coordinator.reason == ShutdownReason.PROGRAMMATIC

    @pytest.mark.asyncio
    async def test_wait_for_shutdown_wakes_on_request(self):
        coordinator = ShutdownCoordinator()
        waiter = asyncio.create_task(coordinator.wait_for_shutdown())
        await asyncio.sleep(0)
        assert not waiter.done()

        coordinator.request_shutdown()
        await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.skipif(sys.platform == "win32", reason="Signal handling not supported on Windows")
    def test_sigterm_sets_reason(self):
        coordinator = ShutdownCoordinator()
        coordinator._handle_signal(signal.SIGTERM)
        assert coordinator.reason == ShutdownReason.SIGNAL_SIGTERM
        assert coordinator.is_shutting_down is True

    @pytest.mark.skipif(sys.platform == "win32", reason="Signal handling not supported on Windows")
    def test_sigint_sets_reason(self):
        coordinator = ShutdownCoordinator()
        coordinator._handle_signal(signal.SIGINT)
        assert coordinator.reason == ShutdownReason.SIGNAL_SIGINT

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="Signal handling not supported on Windows")
    async def test_second_signal_ends_grace(self, fake_server):
        """Test a second signal cuts the wait short but still closes gracefully."""
        coordinator = ShutdownCoordinator(wait_before_shutdown=5.0, shutdown_timeout=1.0)
        listen_result, _ = await start_listening(fake_server)

        coordinator._handle_signal(signal.SIGTERM)
        task = asyncio.create_task(
            coordinator.shutdown(fake_server, ReadinessHandler(), listen_result)
        )
        await asyncio.sleep(0.05)
        coordinator._handle_signal(signal.SIGTERM)
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.grace_ended_by == GraceEnd.CANCELLED
        assert result.reason == ShutdownReason.SIGNAL_SIGTERM
        assert coordinator.reason == ShutdownReason.DOUBLE_SIGNAL
        assert result.forced is False

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="Signal handling not supported on Windows")
    async def test_register_and_unregister_signals(self):
        coordinator = ShutdownCoordinator()
        coordinator.register_signals()
        try:
            assert coordinator._signal_handlers_registered is True
            coordinator.register_signals()  # second call is a no-op
        finally:
            coordinator.unregister_signals()
        assert coordinator._signal_handlers_registered is False

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="Signal handling not supported on Windows")
    async def test_real_sigterm_requests_shutdown(self):
        coordinator = ShutdownCoordinator()
        coordinator.register_signals()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(coordinator.wait_for_shutdown(), timeout=1.0)
        finally:
            coordinator.unregister_signals()

        assert coordinator.reason == ShutdownReason.SIGNAL_SIGTERM
