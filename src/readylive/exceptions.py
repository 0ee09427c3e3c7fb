"""Library exceptions for the readylive package."""


class ReadyLiveError(Exception):
    """Base exception for readylive library."""

    pass


class ServerConfigError(ReadyLiveError, ValueError):
    """Raised when a server option or configuration value is invalid."""

    pass


class ServerStateError(ReadyLiveError):
    """Raised when an operation is invalid for the current server lifecycle state."""

    pass


class DeadlineExceededError(ReadyLiveError, TimeoutError):
    """Raised when graceful shutdown does not finish within its bound."""

    def __init__(self, timeout: float, in_flight: int = 0) -> None:
        self.timeout = timeout
        self.in_flight = in_flight
        super().__init__(
            f"Graceful shutdown exceeded {timeout:.3f}s with {in_flight} request(s) in flight"
        )


__all__ = [
    "ReadyLiveError",
    "ServerConfigError",
    "ServerStateError",
    "DeadlineExceededError",
]
