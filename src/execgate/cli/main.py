"""execgate CLI - serve and inspect a gateway route table."""

from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from execgate.cli.common import CYAN, PURPLE, console, error, info, route_table, success, warn
from execgate.config import GatewayConfig, Settings, load_gateway_config
from execgate.errors import ConfigurationError

app = typer.Typer(
    name="execgate",
    help="execgate - run commands behind HTTP routes",
    add_completion=False,
    no_args_is_help=True,
)


def _settings(**overrides: Any) -> Settings:
    try:
        return Settings(**{key: value for key, value in overrides.items() if value is not None})
    except ValidationError as e:
        error(f"Invalid settings: {e}")
        raise typer.Exit(1) from None


def _load(config_file: Path) -> GatewayConfig:
    try:
        return load_gateway_config(config_file)
    except ConfigurationError as e:
        error(e.message)
        for detail in e.details.get("errors", []):  # type: ignore[union-attr]
            location = ".".join(str(part) for part in detail["loc"])
            console.print(f"  [dim]{location}[/dim]: {detail['msg']}")
        raise typer.Exit(1) from None


@app.command()
def serve(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Route table YAML (env: EXECGATE_CONFIG_FILE)",
    ),
    host: str | None = typer.Option(None, "--host", help="Host to bind to (env: EXECGATE_HOST)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port (env: EXECGATE_PORT)"),
    log_level: str | None = typer.Option(
        None, "--log-level", "-l", help="DEBUG, INFO, WARNING or ERROR"
    ),
) -> None:
    """Start the gateway.

    Examples:
        execgate serve                      # execgate.yaml on 127.0.0.1:8080
        execgate serve -c hooks.yaml -p 9000
    """
    from execgate.main import run_server

    settings = _settings(
        config_file=config_file,
        host=host,
        port=port,
        log_level=log_level.upper() if log_level else None,
    )
    _load(settings.config_file)

    console.print(f"[{PURPLE}]execgate[/] starting...")
    console.print(f"  Config: [{CYAN}]{settings.config_file}[/]")
    console.print(f"  Listen: [{CYAN}]http://{settings.host}:{settings.port}[/]")

    try:
        run_server(settings)
    except KeyboardInterrupt:
        console.print(f"\n[{CYAN}]Shutting down...[/]")


@app.command()
def check(
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Route table YAML (env: EXECGATE_CONFIG_FILE)",
    ),
) -> None:
    """Validate a route table and list its routes."""
    settings = _settings(config_file=config_file)
    config = _load(settings.config_file)

    if not config.routes:
        info(f"{settings.config_file} defines no routes")
        return

    console.print(route_table(config.routes))

    for route in config.routes:
        if route.handler.stream and route.handler.pass_thru:
            warn(f"{route.path}: pass_thru has no effect on streaming routes")
    success(f"{len(config.routes)} route(s) OK")


def main() -> None:
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
