"""Wire shapes for run outcomes.

- Detached runs: ``{"status": "success"}`` or ``{"status": "error", "error": ...}``.
- Collected runs: status plus ``stdout``, ``stderr`` and ``exit_code``.
- Streamed runs: one server-sent event per line, then ``error`` (on failure)
  and a final ``close``.

Field and event names are what clients key on; do not rename them.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse, ServerSentEvent

from execgate.errors import ExecutionError
from execgate.execution.subprocess import ExecutionOutcome, StreamEvent

SSE_SEPARATOR = "\n"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def detached_payload(error: ExecutionError | None) -> dict[str, Any]:
    if error is None:
        return {"status": "success"}
    return {"status": "error", "error": error.message}


def collected_payload(outcome: ExecutionOutcome) -> dict[str, Any]:
    payload: dict[str, Any] = {"status": "success" if outcome.ok else "error"}
    if outcome.error is not None:
        payload["error"] = outcome.error.message
    payload["stdout"] = outcome.stdout
    payload["stderr"] = outcome.stderr
    payload["exit_code"] = outcome.exit_code
    return payload


def detached_response(error: ExecutionError | None) -> JSONResponse:
    """Terse status for fire-and-forget runs; 500 only on failure."""
    return JSONResponse(
        detached_payload(error),
        status_code=status.HTTP_200_OK if error is None else status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def collected_response(outcome: ExecutionOutcome) -> JSONResponse:
    """Status plus captured output for foreground runs."""
    return JSONResponse(
        collected_payload(outcome),
        status_code=status.HTTP_200_OK if outcome.ok else status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def encode_event(event: StreamEvent) -> ServerSentEvent:
    """Map a runner event onto one SSE frame (``event: <kind>\\ndata: <line>\\n\\n``).

    A bare ``\\r`` inside a line (progress bars) would start a new ``data:``
    field, so only the text after the last one is sent, as a terminal shows it.
    """
    return ServerSentEvent(
        data=event.data.rpartition("\r")[2],
        event=event.kind,
        sep=SSE_SEPARATOR,
    )


async def _frames(events: AsyncGenerator[StreamEvent, None]) -> AsyncIterator[ServerSentEvent]:
    # Closing the frame stream closes the run, which kills its process
    async with contextlib.aclosing(events):
        async for event in events:
            yield encode_event(event)


def stream_response(
    events: AsyncGenerator[StreamEvent, None],
    *,
    ping_seconds: int | None = None,
) -> EventSourceResponse:
    """Event-stream response; each frame is sent (and flushed) as its own body chunk."""
    return EventSourceResponse(
        _frames(events),
        headers=SSE_HEADERS,
        ping=ping_seconds,
        sep=SSE_SEPARATOR,
    )
