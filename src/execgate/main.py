"""Entry point for the execgate server."""

import logging
import sys

import structlog

from execgate.config import Settings, load_gateway_config


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.getLogger().setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer()
            if sys.stderr.isatty()
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def run_server(settings: Settings) -> None:
    """Load the route table and serve it until interrupted.

    Raises:
        ConfigurationError: If the gateway file is missing or invalid.
    """
    import uvicorn

    from execgate.app import create_app

    configure_logging(settings.log_level)
    log = structlog.get_logger()

    config = load_gateway_config(settings.config_file)
    app = create_app(config, settings=settings)

    log.info(
        "Starting execgate",
        config_file=str(settings.config_file),
        routes=len(config.routes),
        host=settings.host,
        port=settings.port,
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )
