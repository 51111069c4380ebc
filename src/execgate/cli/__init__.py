"""execgate command-line interface."""

from execgate.cli.main import app, main

__all__ = ["app", "main"]
