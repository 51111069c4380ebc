"""Custom exceptions for the execgate command gateway."""

import signal


class ExecGateError(Exception):
    """Base exception for all execgate errors."""

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ExecGateError):
    """Raised when a command descriptor or gateway file is invalid."""


class TransportError(ExecGateError):
    """Raised when the response sink can no longer be written to."""


class ExecutionError(ExecGateError):
    """Base for process-level failures.

    ``exit_code`` is the process exit code when one is meaningful, -1 otherwise.
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int = -1,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.exit_code = exit_code


class CommandStartError(ExecutionError):
    """Raised when the process could not be launched at all."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(reason, exit_code=-1, details={"command": command})


class CommandFailedError(ExecutionError):
    """The process was launched but did not finish successfully."""


class CommandExitError(CommandFailedError):
    """Raised when the process exits non-zero or dies from a signal."""

    def __init__(self, returncode: int) -> None:
        if returncode >= 0:
            super().__init__(f"exit status {returncode}", exit_code=returncode)
        else:
            super().__init__(f"signal: {_signal_text(-returncode)}", exit_code=-1)
        self.returncode = returncode


class CommandTimeoutError(CommandFailedError):
    """Raised when the process outlived its configured timeout."""

    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"command timed out after {format_seconds(timeout)}",
            exit_code=-1,
            details={"timeout": timeout},
        )
        self.timeout = timeout


class CommandCancelledError(CommandFailedError):
    """Raised when the triggering request ended before the process did."""

    def __init__(self) -> None:
        super().__init__("command cancelled: request ended", exit_code=-1)


def format_seconds(seconds: float) -> str:
    """Render a duration the way it is usually written in config files (``1.5s``, ``2m0s``)."""
    if seconds < 1:
        return f"{seconds * 1000:g}ms"
    if seconds < 60:
        return f"{seconds:g}s"
    minutes, rest = divmod(seconds, 60)
    if minutes < 60:
        return f"{int(minutes)}m{rest:g}s"
    hours, minutes = divmod(int(minutes), 60)
    return f"{hours}h{minutes}m{rest:g}s"


def _signal_text(signum: int) -> str:
    try:
        text = signal.strsignal(signum)
    except ValueError:
        text = None
    return text.lower() if text else f"signal {signum}"
