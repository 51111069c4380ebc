"""Process execution runtime.

Provides the process runner used by every exec route, the per-run
cancellation context, and the registry of live processes.
"""

from execgate.execution.context import ExecutionContext
from execgate.execution.registry import ProcessRegistry, terminate_process
from execgate.execution.subprocess import (
    CLOSE_MESSAGE,
    ExecutionOutcome,
    ProcessRunner,
    StreamEvent,
    StreamSink,
)

__all__ = [
    "CLOSE_MESSAGE",
    "ExecutionContext",
    "ExecutionOutcome",
    "ProcessRegistry",
    "ProcessRunner",
    "StreamEvent",
    "StreamSink",
    "terminate_process",
]
