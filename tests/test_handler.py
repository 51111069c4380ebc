"""Tests for ExecHandler dispatch."""

import asyncio
import json
import time
from unittest.mock import AsyncMock

import pytest
from conftest import make_request
from starlette.responses import PlainTextResponse
from sse_starlette.sse import EventSourceResponse

from execgate.config import CommandDescriptor
from execgate.errors import ConfigurationError
from execgate.execution import ProcessRunner
from execgate.handler import ExecHandler


def handler_for(runner: ProcessRunner, **fields) -> ExecHandler:
    return ExecHandler(CommandDescriptor(**fields), runner=runner, disconnect_poll_seconds=0.05)


def next_handler() -> AsyncMock:
    return AsyncMock(return_value=PlainTextResponse("next", status_code=201))


def body_then_disconnect_after(seconds: float):
    """ASGI receive that sends an empty body, then reports a disconnect once
    ``seconds`` have passed (until then it blocks, like a live connection)."""
    deadline = time.monotonic() + seconds
    sent = False

    async def receive():
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        if time.monotonic() >= deadline:
            return {"type": "http.disconnect"}
        await asyncio.Event().wait()
        return {"type": "http.disconnect"}

    return receive


class TestConstruction:
    def test_rejects_missing_command(self, runner: ProcessRunner) -> None:
        with pytest.raises(ConfigurationError):
            ExecHandler(CommandDescriptor(), runner=runner)

    def test_timeout_is_provisioned(self, runner: ProcessRunner) -> None:
        assert handler_for(runner, command="true", timeout="2s").timeout == 2.0
        assert handler_for(runner, command="true").timeout is None

    def test_resolve_argv(self, runner: ProcessRunner) -> None:
        handler = handler_for(runner, command="echo", args=["{method}", "{query.x}", "lit"])
        request = make_request("/", method="PUT", query_string="x=1")

        assert handler.resolve_argv(request) == ["PUT", "1", "lit"]


class TestDetachedMode:
    async def test_success(self, runner: ProcessRunner) -> None:
        call_next = next_handler()
        response = await handler_for(runner, command="true")(make_request(), call_next)

        assert response.status_code == 200
        assert json.loads(response.body) == {"status": "success"}
        call_next.assert_not_awaited()

    async def test_failure(self, runner: ProcessRunner) -> None:
        response = await handler_for(runner, command="false")(make_request(), next_handler())

        assert response.status_code == 500
        assert json.loads(response.body) == {"status": "error", "error": "exit status 1"}


class TestCollectedMode:
    async def test_output(self, runner: ProcessRunner) -> None:
        handler = handler_for(runner, command="echo", args=["{path}"], foreground=True)
        response = await handler(make_request("/hello"), next_handler())

        assert response.status_code == 200
        assert json.loads(response.body) == {
            "status": "success",
            "stdout": "/hello\n",
            "stderr": "",
            "exit_code": 0,
        }


class TestPassThru:
    @pytest.mark.parametrize("foreground", [False, True])
    async def test_success_continues(self, runner: ProcessRunner, foreground: bool) -> None:
        call_next = next_handler()
        handler = handler_for(runner, command="true", foreground=foreground, pass_thru=True)

        response = await handler(make_request(), call_next)

        call_next.assert_awaited_once()
        assert response.status_code == 201
        assert response.body == b"next"

    @pytest.mark.parametrize("foreground", [False, True])
    async def test_failure_still_continues(self, runner: ProcessRunner, foreground: bool) -> None:
        call_next = next_handler()
        handler = handler_for(runner, command="false", foreground=foreground, pass_thru=True)

        response = await handler(make_request(), call_next)

        call_next.assert_awaited_once()
        assert response.status_code == 201

    async def test_runs_before_continuing(self, runner: ProcessRunner, tmp_path) -> None:
        marker = tmp_path / "ran"

        async def call_next():
            assert marker.exists()
            return PlainTextResponse("next")

        handler = handler_for(runner, command="touch", args=[str(marker)], pass_thru=True)
        response = await handler(make_request(), call_next)

        assert response.body == b"next"


class TestStreamMode:
    async def test_returns_event_stream(self, runner: ProcessRunner) -> None:
        call_next = next_handler()
        handler = handler_for(runner, command="echo", args=["x"], stream=True, pass_thru=True)

        response = await handler(make_request(), call_next)

        assert isinstance(response, EventSourceResponse)
        call_next.assert_not_awaited()
        # Nothing runs until the body is iterated
        assert len(runner.registry) == 0


class TestDisconnect:
    async def test_disconnect_cancels_collected_run(self, runner: ProcessRunner) -> None:
        receive = body_then_disconnect_after(0.2)
        request = make_request(receive=receive)
        handler = handler_for(runner, command="sleep", args=["10"], foreground=True)

        started = time.monotonic()
        response = await handler(request, next_handler())

        assert time.monotonic() - started < 3
        assert response.status_code == 500
        payload = json.loads(response.body)
        assert payload["error"] == "command cancelled: request ended"
        assert payload["exit_code"] == -1
        assert len(runner.registry) == 0

    async def test_disconnect_cancels_detached_run(self, runner: ProcessRunner) -> None:
        receive = body_then_disconnect_after(0.2)
        request = make_request(receive=receive)
        handler = handler_for(runner, command="sleep", args=["10"])

        started = time.monotonic()
        response = await handler(request, next_handler())

        assert time.monotonic() - started < 3
        assert json.loads(response.body) == {
            "status": "error",
            "error": "command cancelled: request ended",
        }
