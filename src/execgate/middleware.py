"""Starlette middleware that routes matching requests to exec handlers."""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from execgate.config import RespondConfig, RouteConfig
from execgate.handler import Continuation, ExecHandler

log = structlog.get_logger()


def static_response(respond: RespondConfig) -> Response:
    return Response(
        content=respond.body,
        status_code=respond.status,
        media_type=respond.content_type,
    )


class ExecMiddleware(BaseHTTPMiddleware):
    """Send requests matching a configured route to its ``ExecHandler``.

    Routes are tried in order; the first match wins. Unmatched requests, and
    pass-through runs without a ``respond`` block, continue down the app.
    """

    def __init__(self, app: ASGIApp, routes: Sequence[tuple[RouteConfig, ExecHandler]]) -> None:
        super().__init__(app)
        self.routes = list(routes)

    def match(self, path: str, method: str) -> tuple[RouteConfig, ExecHandler] | None:
        for route, handler in self.routes:
            if route.matches(path, method):
                return route, handler
        return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        matched = self.match(request.url.path, request.method)
        if matched is None:
            return await call_next(request)

        route, handler = matched
        log.debug("route_matched", route=route.path, path=request.url.path, method=request.method)

        continuation: Continuation
        if route.respond is not None:
            respond = route.respond

            async def continuation() -> Response:
                return static_response(respond)

        else:

            async def continuation() -> Response:
                return await call_next(request)

        return await handler(request, continuation)
