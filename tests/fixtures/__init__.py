"""
Shared test fixtures for the readylive library.

Usage:
    from tests.fixtures import FakeServer, PlainHealthHandler, echo_path
"""

from tests.fixtures.servers import FakeServer, PlainHealthHandler, echo_path

__all__ = [
    "FakeServer",
    "PlainHealthHandler",
    "echo_path",
]
