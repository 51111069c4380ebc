"""Per-request dispatch for one configured command.

Mode selection:

=======  ==========  =========  ==============================================
stream   foreground  pass_thru  behavior
=======  ==========  =========  ==============================================
yes      any         any        streamed run, SSE response, never continues
no       yes         yes        collected run, result logged, continuation
no       yes         no         collected run, JSON status + output
no       no          yes        detached run, error logged, continuation
no       no          no         detached run, terse JSON status
=======  ==========  =========  ==============================================
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from starlette.requests import Request
from starlette.responses import Response

from execgate.config import CommandDescriptor, ExecutionMode
from execgate.errors import ExecutionError
from execgate.execution import ExecutionContext, ExecutionOutcome, ProcessRunner
from execgate.placeholders import Resolver, resolve_args, resolve_placeholders
from execgate.responses import collected_response, detached_response, stream_response

log = structlog.get_logger()

T = TypeVar("T")

# Zero-argument "proceed to the next handler"
Continuation = Callable[[], Awaitable[Response]]


class ExecHandler:
    """Runs a command for each request and delivers the outcome.

    Constructed once per route; holds only read-only state, so a single
    instance serves any number of concurrent requests.
    """

    def __init__(
        self,
        descriptor: CommandDescriptor,
        *,
        runner: ProcessRunner | None = None,
        resolver: Resolver = resolve_placeholders,
        disconnect_poll_seconds: float = 0.25,
        sse_ping_seconds: int | None = None,
    ) -> None:
        descriptor.validate_command()
        self.descriptor = descriptor
        self.runner = runner or ProcessRunner()
        self.resolver = resolver
        self.timeout = descriptor.timeout_seconds
        self.disconnect_poll_seconds = disconnect_poll_seconds
        self.sse_ping_seconds = sse_ping_seconds
        self.log = log.bind(command=descriptor.command, mode=descriptor.mode.value)

    def resolve_argv(self, request: Request) -> list[str]:
        """Resolve the argument templates against this request."""
        return resolve_args(self.descriptor.args, request, self.resolver)

    async def __call__(self, request: Request, call_next: Continuation) -> Response:
        argv = self.resolve_argv(request)
        mode = self.descriptor.mode
        self.log.debug("exec_request", path=request.url.path, args=argv)

        if mode is ExecutionMode.STREAM:
            return self._stream(argv)

        error: ExecutionError | None
        if mode is ExecutionMode.COLLECT:
            outcome = await self._collect(request, argv)
            if not self.descriptor.pass_thru:
                return collected_response(outcome)
            error = outcome.error
        else:
            error = await self._detach(request, argv)
            if not self.descriptor.pass_thru:
                return detached_response(error)

        if error is not None:
            self.log.error(
                "command_failed_passing_through",
                error=error.message,
                exit_code=error.exit_code,
            )
        return await call_next()

    async def _collect(self, request: Request, argv: list[str]) -> ExecutionOutcome:
        return await self._bound_to_request(
            request,
            lambda context: self.runner.run_collected(
                self.descriptor.command,
                argv,
                directory=self.descriptor.directory,
                context=context,
            ),
        )

    async def _detach(self, request: Request, argv: list[str]) -> ExecutionError | None:
        return await self._bound_to_request(
            request,
            lambda context: self.runner.run_detached(
                self.descriptor.command,
                argv,
                directory=self.descriptor.directory,
                context=context,
            ),
        )

    def _stream(self, argv: list[str]) -> Response:
        # The event stream's own disconnect handling closes the run
        events = self.runner.stream(
            self.descriptor.command,
            argv,
            directory=self.descriptor.directory,
            context=ExecutionContext(timeout=self.timeout),
        )
        return stream_response(events, ping_seconds=self.sse_ping_seconds)

    async def _bound_to_request(
        self,
        request: Request,
        run: Callable[[ExecutionContext], Awaitable[T]],
    ) -> T:
        """Execute ``run`` with a context that ends when the client disconnects."""
        context = ExecutionContext(timeout=self.timeout)

        # Cache the body first: the continuation can still read it and the
        # disconnect poll below never swallows a body chunk
        await request.body()

        watcher = asyncio.create_task(self._watch_disconnect(request, context))
        try:
            return await run(context)
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

    async def _watch_disconnect(self, request: Request, context: ExecutionContext) -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(self.disconnect_poll_seconds)
        self.log.info("client_disconnected", path=request.url.path)
        context.end_trigger()
