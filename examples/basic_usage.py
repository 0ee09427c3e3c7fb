"""
Basic Usage Example

This example demonstrates the readylive shutdown sequence end to end:
- Wrapping an aiohttp server with /ready and /health endpoints
- Polling the endpoints like an orchestrator would
- Graceful shutdown: not ready, wait before shutdown, drain, close

Run with: python examples/basic_usage.py
"""

import asyncio
import logging

import aiohttp
from aiohttp import web
from aiohttp.test_utils import unused_port

from readylive import (
    AiohttpServer,
    shutdown_timeout,
    wait_before_shutdown,
    wrap_server,
)


async def hello(request: web.Request) -> web.Response:
    """Application handler."""
    return web.Response(text=f"hello from {request.path}")


async def probe(session: aiohttp.ClientSession, url: str) -> str:
    async with session.get(url) as response:
        return f"{response.status}"


async def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("Readiness/Liveness Basic Usage Example")
    print("=" * 60)

    port = unused_port()
    base = f"http://127.0.0.1:{port}"

    server = AiohttpServer(handler=hello, port=port)
    wrapped = wrap_server(server, wait_before_shutdown(1.0), shutdown_timeout(2.0))

    print(f"\n1. Starting server on {base}")
    wrapped.listen_and_serve()
    await server.wait_started()

    async with aiohttp.ClientSession() as session:
        print("\n2. Probing while serving")
        print(f"   /ready  -> {await probe(session, base + '/ready')}")
        print(f"   /health -> {await probe(session, base + '/health')}")
        async with session.get(base + "/hello") as response:
            print(f"   /hello  -> {response.status} {await response.text()!r}")

        print("\n3. Starting shutdown")
        shutdown = asyncio.create_task(wrapped.shutdown())
        await asyncio.sleep(0.2)

        print("\n4. Probing during the wait before shutdown")
        print(f"   /ready  -> {await probe(session, base + '/ready')}")
        print(f"   /health -> {await probe(session, base + '/health')}")
        print(f"   phase: {wrapped.phase.value}")

        result = await shutdown

    print("\n5. Shutdown result:")
    for key, value in result.to_dict().items():
        print(f"   {key}: {value}")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
