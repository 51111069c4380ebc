"""Async process runner behind every exec route.

Three delivery strategies share one spawn and supervision path:

- ``run_detached``: wait for exit, report only success or failure.
- ``run_collected``: buffer stdout and stderr in full.
- ``stream`` / ``run_streamed``: forward lines as the process writes them.

Every run is bounded by an ``ExecutionContext``. When its timeout elapses or
the trigger ends, the process group gets SIGTERM, then SIGKILL after
``kill_grace_seconds``.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

import structlog

from execgate.errors import (
    CommandCancelledError,
    CommandExitError,
    CommandStartError,
    CommandTimeoutError,
    ExecutionError,
    TransportError,
)
from execgate.execution.context import ExecutionContext
from execgate.execution.registry import (
    ProcessRegistry,
    signal_process_group,
    terminate_process,
)

log = structlog.get_logger()

CLOSE_MESSAGE = "Command finished"

StreamKind = Literal["stdout", "stderr", "error", "close"]


@dataclass(frozen=True)
class StreamEvent:
    """One unit of streamed delivery."""

    kind: StreamKind
    data: str


@dataclass
class ExecutionOutcome:
    """Outcome of a collected run."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    error: ExecutionError | None = None
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class StreamSink(Protocol):
    """Receiver for streamed runs (see ``ProcessRunner.run_streamed``)."""

    async def on_stdout_line(self, text: str) -> None: ...

    async def on_stderr_line(self, text: str) -> None: ...

    async def on_error(self, text: str) -> None: ...

    async def on_close(self) -> None: ...


@dataclass
class ProcessRunner:
    """Spawns command processes with a bounded lifetime.

    Usage::

        runner = ProcessRunner()
        outcome = await runner.run_collected(
            "echo",
            ["hello"],
            context=ExecutionContext(timeout=5),
        )

    One ``ExecutionContext`` per run; the runner itself is stateless apart
    from the shared registry and can serve any number of concurrent runs.
    """

    registry: ProcessRegistry = field(default_factory=ProcessRegistry)

    # Seconds between SIGTERM and SIGKILL when a run is cut short
    kill_grace_seconds: float = 3.0

    # StreamReader limit; longer stream-mode lines are dropped
    max_line_bytes: int = 1024 * 1024

    # Lines read ahead of a stream consumer; a full queue stalls the readers
    # and, once the pipe fills, the process itself
    max_queued_lines: int = 128

    async def run_detached(
        self,
        program: str,
        argv: Sequence[str],
        *,
        directory: str = "",
        context: ExecutionContext,
    ) -> ExecutionError | None:
        """Run without capturing output.

        Returns:
            None on success, otherwise the error that ended the run.
        """
        started = time.monotonic()
        try:
            proc = await self._spawn(program, argv, directory, capture=False)
        except CommandStartError as e:
            return e

        async with self._supervised(proc, context):
            returncode = await proc.wait()

        return self._finish(proc, returncode, context, started)

    async def run_collected(
        self,
        program: str,
        argv: Sequence[str],
        *,
        directory: str = "",
        context: ExecutionContext,
    ) -> ExecutionOutcome:
        """Run and buffer both output streams until the process exits."""
        started = time.monotonic()
        try:
            proc = await self._spawn(program, argv, directory, capture=True)
        except CommandStartError as e:
            return ExecutionOutcome(exit_code=-1, error=e)

        async with self._supervised(proc, context):
            stdout, stderr = await proc.communicate()

        returncode = proc.returncode if proc.returncode is not None else -1
        error = self._finish(proc, returncode, context, started)
        return ExecutionOutcome(
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            exit_code=0 if error is None else error.exit_code,
            error=error,
            duration_s=time.monotonic() - started,
        )

    async def stream(
        self,
        program: str,
        argv: Sequence[str],
        *,
        directory: str = "",
        context: ExecutionContext,
    ) -> AsyncIterator[StreamEvent]:
        """Run and yield output lines as they arrive.

        Yields ``stdout``/``stderr`` events in arrival order (ordered within
        each stream only), then at most one ``error`` event, then exactly one
        ``close`` event. Closing the iterator early kills the process.

        At most ``max_queued_lines`` lines wait for the consumer. Past that the
        readers wait; once the pipes fill, the process blocks on write.
        """
        started = time.monotonic()
        try:
            proc = await self._spawn(program, argv, directory, capture=True)
        except CommandStartError as e:
            yield StreamEvent("error", e.message)
            yield StreamEvent("close", CLOSE_MESSAGE)
            return

        queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue(maxsize=self.max_queued_lines)
        readers = [
            asyncio.create_task(self._read_lines(proc.stdout, "stdout", queue)),
            asyncio.create_task(self._read_lines(proc.stderr, "stderr", queue)),
        ]

        try:
            async with self._supervised(proc, context):
                # Each reader enqueues one None once its pipe hits EOF
                pending = len(readers)
                while pending:
                    event = await queue.get()
                    if event is None:
                        pending -= 1
                        continue
                    yield event
                returncode = await proc.wait()
        finally:
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)

        error = self._finish(proc, returncode, context, started)
        if error is not None:
            yield StreamEvent("error", error.message)
        yield StreamEvent("close", CLOSE_MESSAGE)

    async def run_streamed(
        self,
        program: str,
        argv: Sequence[str],
        *,
        directory: str = "",
        context: ExecutionContext,
        sink: StreamSink,
    ) -> None:
        """Drive ``sink`` with the events of a streamed run.

        This is the push-style counterpart of ``stream`` for hosts that do
        not speak server-sent events (a websocket or a log shipper, say).
        The HTTP gateway itself hands ``stream`` straight to the event-stream
        response.

        Raises:
            TransportError: If the sink fails; the process is killed first.
        """
        events = self.stream(program, argv, directory=directory, context=context)
        async with contextlib.aclosing(events):
            async for event in events:
                try:
                    await _deliver(sink, event)
                except Exception as e:
                    log.error(
                        "stream_sink_failed", command=program, stream=event.kind, error=str(e)
                    )
                    raise TransportError(
                        f"writing {event.kind} event failed: {e}",
                        details={"command": program},
                    ) from e

    async def _spawn(
        self,
        program: str,
        argv: Sequence[str],
        directory: str,
        *,
        capture: bool,
    ) -> asyncio.subprocess.Process:
        output = asyncio.subprocess.PIPE if capture else asyncio.subprocess.DEVNULL
        try:
            proc = await asyncio.create_subprocess_exec(
                program,
                *argv,
                cwd=directory or None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=output,
                stderr=output,
                start_new_session=True,
                limit=self.max_line_bytes,
            )
        except (OSError, ValueError) as e:
            reason = _describe_start_failure(program, e)
            log.error("command_start_failed", command=program, args=list(argv), error=reason)
            raise CommandStartError(program, reason) from e

        self.registry.add(proc)
        log.info("command_started", command=program, args=list(argv), pid=proc.pid)
        return proc

    @contextlib.asynccontextmanager
    async def _supervised(
        self,
        proc: asyncio.subprocess.Process,
        context: ExecutionContext,
    ) -> AsyncIterator[None]:
        """Arm the cancellation watchdog for the duration of the block.

        On the way out, anything still running (because the block raised or
        was cancelled) is killed and reaped.
        """
        watchdog = asyncio.create_task(self._watchdog(proc, context))
        try:
            yield
        finally:
            # Kill before any await; under a cancelled scope every await raises again
            watchdog.cancel()
            if proc.returncode is None:
                signal_process_group(proc, signal.SIGKILL)
            try:
                await asyncio.gather(watchdog, return_exceptions=True)
                await proc.wait()
            finally:
                self.registry.discard(proc)

    async def _watchdog(
        self,
        proc: asyncio.subprocess.Process,
        context: ExecutionContext,
    ) -> None:
        reason = await context.wait_cancelled()
        log.warning(
            "command_cancelling",
            pid=proc.pid,
            reason=reason,
            timeout=context.timeout,
        )
        await terminate_process(proc, self.kill_grace_seconds)

    async def _read_lines(
        self,
        stream: asyncio.StreamReader | None,
        kind: StreamKind,
        queue: asyncio.Queue[StreamEvent | None],
    ) -> None:
        """Drain one pipe line by line into ``queue``, then enqueue one None."""
        try:
            if stream is None:
                return
            while True:
                try:
                    raw = await stream.readline()
                except ValueError:
                    log.warning("stream_line_dropped", stream=kind, limit=self.max_line_bytes)
                    continue
                if not raw:
                    break
                text = _decode(raw).removesuffix("\n").removesuffix("\r")
                await queue.put(StreamEvent(kind, text))
        finally:
            # A cancelled reader has no consumer left to wake
            task = asyncio.current_task()
            if task is None or not task.cancelling():
                await queue.put(None)

    def _finish(
        self,
        proc: asyncio.subprocess.Process,
        returncode: int,
        context: ExecutionContext,
        started: float,
    ) -> ExecutionError | None:
        """Classify how the run ended and log it."""
        error: ExecutionError | None
        if context.reason == "timeout":
            error = CommandTimeoutError(context.timeout or 0.0)
        elif context.reason == "cancelled":
            error = CommandCancelledError()
        elif returncode != 0:
            error = CommandExitError(returncode)
        else:
            error = None

        duration = time.monotonic() - started
        if error is None:
            log.info("command_finished", pid=proc.pid, exit_code=0, duration_s=round(duration, 3))
        else:
            log.info(
                "command_failed",
                pid=proc.pid,
                exit_code=error.exit_code,
                error=error.message,
                duration_s=round(duration, 3),
            )
        return error


async def _deliver(sink: StreamSink, event: StreamEvent) -> None:
    if event.kind == "stdout":
        await sink.on_stdout_line(event.data)
    elif event.kind == "stderr":
        await sink.on_stderr_line(event.data)
    elif event.kind == "error":
        await sink.on_error(event.data)
    else:
        await sink.on_close()


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _describe_start_failure(program: str, exc: Exception) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        message = f"cannot start {program}: {exc.strerror}"
        if exc.filename and exc.filename != program:
            message += f" ({exc.filename})"
        return message
    return f"cannot start {program}: {exc}"
