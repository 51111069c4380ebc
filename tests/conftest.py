"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
import pytest
from fastapi import FastAPI
from sse_starlette.sse import AppStatus
from starlette.requests import Request
from starlette.types import Message

from execgate.app import create_app
from execgate.config import GatewayConfig, Settings, parse_gateway_config
from execgate.execution import ProcessRunner


@pytest.fixture(autouse=True)
def _reset_sse_exit_event() -> None:
    """sse-starlette caches its shutdown event on the first loop that uses it."""
    AppStatus.should_exit_event = None


@pytest.fixture
def runner() -> ProcessRunner:
    """A runner with short kill escalation for fast tests."""
    return ProcessRunner(kill_grace_seconds=0.5)


@pytest.fixture
def settings() -> Settings:
    return Settings(kill_grace_seconds=0.5, sse_ping_seconds=60)


def gateway(*routes: dict[str, Any]) -> GatewayConfig:
    """Build a validated route table from plain dicts."""
    return parse_gateway_config({"routes": list(routes)})


@pytest.fixture
async def make_client(settings: Settings) -> AsyncIterator[Callable[..., httpx.AsyncClient]]:
    """Factory for httpx clients bound to a gateway app built from routes."""
    clients: list[httpx.AsyncClient] = []

    def _make(*routes: dict[str, Any], app: FastAPI | None = None) -> httpx.AsyncClient:
        app = app or create_app(gateway(*routes), settings=settings)
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
            timeout=30,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()


def make_request(
    path: str = "/",
    *,
    method: str = "GET",
    query_string: str = "",
    headers: dict[str, str] | None = None,
    client: tuple[str, int] | None = ("203.0.113.7", 51234),
    receive: Callable[[], Awaitable[Message]] | None = None,
) -> Request:
    """Build a Starlette request from a minimal ASGI scope."""
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": query_string.encode(),
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "server": ("testserver", 80),
        "client": client,
    }
    return Request(scope, receive or idle_receive())


def idle_receive() -> Callable[[], Awaitable[Message]]:
    """ASGI receive for a connected client that sent an empty body."""
    sent = False

    async def receive() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await asyncio.Event().wait()
        return {"type": "http.disconnect"}

    return receive


def parse_sse(body: str) -> list[tuple[str, str]]:
    """Split an event-stream body into (event, data) pairs, skipping comments."""
    events: list[tuple[str, str]] = []
    for frame in body.split("\n\n"):
        lines = [line for line in frame.split("\n") if line and not line.startswith(":")]
        if not lines:
            continue
        event = ""
        data: list[str] = []
        for line in lines:
            field, _, value = line.partition(": ")
            if field == "event":
                event = value
            elif field == "data":
                data.append(value)
        events.append((event, "\n".join(data)))
    return events
