"""Console output for the execgate CLI."""

from collections.abc import Iterable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from execgate.config import ExecutionMode, RouteConfig
from execgate.errors import format_seconds

PURPLE = "#e135ff"
CYAN = "#80ffea"
YELLOW = "#f1fa8c"
GREEN = "#50fa7b"
RED = "#ff6363"

MODE_STYLES = {
    ExecutionMode.STREAM: PURPLE,
    ExecutionMode.COLLECT: CYAN,
    ExecutionMode.DETACH: YELLOW,
}

console = Console()


def success(message: str) -> None:
    console.print(f"[{GREEN}]✓[/] {message}")


def error(message: str) -> None:
    console.print(f"[{RED}]✗[/] {message}")


def warn(message: str) -> None:
    console.print(f"[{YELLOW}]![/] {message}")


def info(message: str) -> None:
    console.print(f"[{CYAN}]→[/] {message}")


def describe_mode(route: RouteConfig) -> str:
    """Delivery mode as shown to operators, e.g. ``collect + pass-thru``."""
    descriptor = route.handler
    label = f"[{MODE_STYLES[descriptor.mode]}]{descriptor.mode.value}[/]"
    if descriptor.pass_thru and not descriptor.stream:
        label += " + pass-thru"
    return label


def format_command(route: RouteConfig) -> str:
    descriptor = route.handler
    return escape(" ".join([descriptor.command, *descriptor.args]))


def route_table(routes: Iterable[RouteConfig]) -> Table:
    """One row per route, in match order."""
    table = Table(border_style=CYAN)
    table.add_column("Path", style=PURPLE)
    for column in ("Methods", "Command", "Mode", "Timeout"):
        table.add_column(column)

    for route in routes:
        timeout = route.handler.timeout_seconds
        table.add_row(
            escape(route.path),
            ", ".join(route.methods) or "any",
            format_command(route),
            describe_mode(route),
            format_seconds(timeout) if timeout else "none",
        )
    return table
