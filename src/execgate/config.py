"""Configuration management for execgate.

Two layers:

- ``Settings``: process-wide knobs loaded from ``EXECGATE_*`` environment
  variables (and ``.env``).
- ``GatewayConfig``: the YAML route table. Each route carries a
  ``CommandDescriptor`` that is validated once at load time and never mutated
  afterwards.
"""

import re
from enum import StrEnum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Annotated, Any, Literal

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from execgate.errors import ConfigurationError

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h|d)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


def parse_duration(value: Any) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) or Go-style strings such as ``"10s"``,
    ``"1m30s"``, ``"250ms"`` and ``"1d"``. Empty strings mean zero.

    Raises:
        ValueError: If the value is negative or not a duration.
    """
    if isinstance(value, bool):
        raise ValueError("duration must be a number or a string like '10s'")

    if isinstance(value, int | float):
        seconds = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            seconds = float(text)
        except ValueError:
            seconds = _parse_duration_string(text)
    else:
        raise ValueError("duration must be a number or a string like '10s'")

    if seconds < 0:
        raise ValueError("duration must not be negative")
    return seconds


def _parse_duration_string(text: str) -> float:
    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position == 0 or position != len(text):
        raise ValueError(f"invalid duration {text!r}")
    return total


Duration = Annotated[float, BeforeValidator(parse_duration)]


class ExecutionMode(StrEnum):
    """How a run's outcome is delivered to the caller."""

    STREAM = "stream"
    COLLECT = "collect"
    DETACH = "detach"


class CommandDescriptor(BaseModel):
    """Immutable description of one command a route runs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    command: str = Field(default="", description="Executable path or name (PATH lookup applies)")
    args: tuple[str, ...] = Field(
        default=(), description="Argument templates, may contain request placeholders"
    )
    directory: str = Field(default="", description="Working directory (empty = inherit)")
    timeout: Duration = Field(default=0.0, description="Max run time; 0 means unbounded")
    stream: bool = Field(default=False, description="Stream output as server-sent events")
    foreground: bool = Field(default=False, description="Wait and return collected output")
    pass_thru: bool = Field(
        default=False,
        validation_alias=AliasChoices("pass_thru", "passthru"),
        description="Hand the request to the next handler instead of responding",
    )

    @field_validator("args", mode="before")
    @classmethod
    def _stringify_args(cls, value: Any) -> Any:
        # YAML happily turns `- 1` or `- true` into non-strings
        if isinstance(value, list | tuple):
            return tuple(
                str(item).lower() if isinstance(item, bool) else str(item) for item in value
            )
        return value

    def validate_command(self) -> None:
        """Raise ``ConfigurationError`` unless the descriptor can be run."""
        if not self.command.strip():
            raise ConfigurationError("command is required")

    @property
    def timeout_seconds(self) -> float | None:
        """Timeout in seconds, or None when unbounded."""
        return self.timeout if self.timeout > 0 else None

    @property
    def mode(self) -> ExecutionMode:
        if self.stream:
            return ExecutionMode.STREAM
        if self.foreground:
            return ExecutionMode.COLLECT
        return ExecutionMode.DETACH


class RespondConfig(BaseModel):
    """Static response served after a pass-through run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: int = Field(default=200, ge=100, le=599)
    body: str = ""
    content_type: str = "text/plain; charset=utf-8"


class RouteConfig(BaseModel):
    """A path (and optional methods) bound to a command."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    methods: tuple[str, ...] = ()
    handler: CommandDescriptor = Field(validation_alias=AliasChoices("exec", "handler"))
    respond: RespondConfig | None = None

    @field_validator("path")
    @classmethod
    def _path_is_absolute(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must start with '/'")
        return value

    @field_validator("methods", mode="before")
    @classmethod
    def _normalize_methods(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list | tuple):
            return tuple(str(method).upper() for method in value)
        return value

    @model_validator(mode="after")
    def _respond_needs_pass_thru(self) -> "RouteConfig":
        if self.respond is not None and (self.handler.stream or not self.handler.pass_thru):
            raise ValueError("respond is only used by pass_thru routes that do not stream")
        return self

    @property
    def is_pattern(self) -> bool:
        return any(char in self.path for char in "*?[")

    def matches(self, path: str, method: str) -> bool:
        """Check whether a request path and method select this route."""
        if self.methods and method.upper() not in self.methods:
            return False
        if self.is_pattern:
            return fnmatchcase(path, self.path)
        return path == self.path


class GatewayConfig(BaseModel):
    """The full route table, in match order."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    routes: tuple[RouteConfig, ...] = ()


def parse_gateway_config(data: Any) -> GatewayConfig:
    """Validate raw config data into a ``GatewayConfig``.

    Raises:
        ConfigurationError: If the data does not describe a valid route table.
    """
    try:
        config = GatewayConfig.model_validate(data or {})
    except ValidationError as e:
        raise ConfigurationError(
            f"invalid gateway config: {e.error_count()} error(s)",
            details={"errors": e.errors(include_url=False)},
        ) from e

    for route in config.routes:
        try:
            route.handler.validate_command()
        except ConfigurationError as e:
            raise ConfigurationError(f"route {route.path}: {e.message}") from e
    return config


def load_gateway_config(path: Path) -> GatewayConfig:
    """Load and validate the YAML route table at ``path``."""
    if not path.exists():
        raise ConfigurationError(f"config file not found: {path}", details={"path": str(path)})

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e

    return parse_gateway_config(data)


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EXECGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(default="127.0.0.1", description="Server bind host")
    port: int = Field(default=8080, description="Server bind port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    config_file: Path = Field(
        default=Path("execgate.yaml"),
        description="YAML route table",
    )

    # Process handling
    kill_grace_seconds: float = Field(
        default=3.0,
        ge=0,
        description="Seconds between SIGTERM and SIGKILL when stopping a process",
    )
    max_line_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Longest stdout/stderr line forwarded in stream mode",
    )
    max_queued_lines: int = Field(
        default=128,
        ge=1,
        description="Stream-mode lines held for a slow client before the process is stalled",
    )
    sse_ping_seconds: int = Field(
        default=15,
        ge=1,
        description="Keep-alive comment interval for event streams",
    )


settings = Settings()
