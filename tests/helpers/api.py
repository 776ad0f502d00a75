"""HTTP client helpers for API tests."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from httpx import ASGITransport, AsyncClient

from rethink.api.main import create_app
from rethink.runtime import ThinkingRuntime


@asynccontextmanager
async def api_client(runtime: ThinkingRuntime, *, raise_app_exceptions: bool = True) -> AsyncIterator[AsyncClient]:
    """AsyncClient bound to a fresh app over ``runtime``.

    ASGITransport does not run the lifespan, so the runtime must already be
    started.
    """
    app = create_app(runtime=runtime)
    transport = ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def parse_sse(body: str) -> list[tuple[str, dict[str, Any]]]:
    """Split a Server-Sent Events body into (event, payload) pairs."""
    events = []
    for block in body.strip().split("\n\n"):
        event, data = "message", ""
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: ") :]
            elif line.startswith("data: "):
                data = line[len("data: ") :]
        events.append((event, json.loads(data)))
    return events
