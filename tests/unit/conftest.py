"""Unit test fixtures: FastMCP client and server engine reset."""

from __future__ import annotations

import pytest
from fastmcp import Client


@pytest.fixture()
async def mcp_client():
    """Yield a FastMCP Client wired to the CRASH server."""
    from crashmcp.server import mcp

    async with Client(mcp) as client:
        yield client


@pytest.fixture(autouse=True)
def fresh_server_engine():
    """Give every test its own server engine."""
    from crashmcp.server import configure
    from crashmcp.server import shutdown

    configure()
    yield
    shutdown()
