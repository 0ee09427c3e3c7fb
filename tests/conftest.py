"""
Shared pytest fixtures for the readylive library tests.

This module provides:
- fake_server: scriptable HTTPServer (see tests.fixtures.servers)
- mock_tracer: MockTracer recording span names
- free_port: an unused TCP port on localhost for socket tests
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp.test_utils import unused_port

from readylive.observability import MockTracer
from tests.fixtures import FakeServer

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line(
        "markers", "integration: marks tests that open real sockets on localhost"
    )


# ============================================================================
# Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def fake_server() -> FakeServer:
    """FakeServer created inside the running event loop."""
    return FakeServer()


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Tracer recording spans for assertions."""
    return MockTracer()


@pytest.fixture
def free_port() -> int:
    """An unused TCP port on localhost."""
    return unused_port()
