"""FastAPI application factory for the gateway."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI

from execgate.config import GatewayConfig, Settings
from execgate.config import settings as default_settings
from execgate.execution import ProcessRunner
from execgate.handler import ExecHandler
from execgate.middleware import ExecMiddleware

log = structlog.get_logger()


def create_app(
    config: GatewayConfig,
    *,
    settings: Settings | None = None,
    runner: ProcessRunner | None = None,
) -> FastAPI:
    """Build the gateway app for a validated route table.

    Args:
        config: Route table; every descriptor is provisioned here, once.
        settings: Process settings (defaults to the environment-loaded ones).
        runner: Shared process runner (one is created from settings if omitted).

    Returns:
        FastAPI app whose lifespan terminates leftover processes on shutdown.
    """
    settings = settings or default_settings

    runner = runner or ProcessRunner(
        kill_grace_seconds=settings.kill_grace_seconds,
        max_line_bytes=settings.max_line_bytes,
        max_queued_lines=settings.max_queued_lines,
    )
    handlers = [
        (
            route,
            ExecHandler(
                route.handler,
                runner=runner,
                sse_ping_seconds=settings.sse_ping_seconds,
            ),
        )
        for route in config.routes
    ]

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        log.info("gateway_started", routes=len(handlers))
        try:
            yield
        finally:
            await runner.registry.shutdown(settings.kill_grace_seconds)
            log.info("gateway_stopped")

    app = FastAPI(
        title="execgate",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.runner = runner
    app.add_middleware(ExecMiddleware, routes=handlers)

    @app.get("/healthz")
    async def healthz() -> dict[str, Any]:
        return {
            "status": "ok",
            "routes": len(handlers),
            "running": len(runner.registry),
        }

    return app
