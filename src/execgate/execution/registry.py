"""Live process tracking so host shutdown can reap in-flight runs."""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
from collections.abc import Iterator

import structlog

log = structlog.get_logger()


def signal_process_group(proc: asyncio.subprocess.Process, signum: int) -> None:
    """Send ``signum`` to the process group led by ``proc`` (or just ``proc``)."""
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        if os.getpgid(proc.pid) == proc.pid:
            os.killpg(proc.pid, signum)
        else:
            proc.send_signal(signum)


async def terminate_process(proc: asyncio.subprocess.Process, grace_seconds: float) -> int:
    """Stop a process: SIGTERM, then SIGKILL if it outlives ``grace_seconds``."""
    if proc.returncode is not None:
        return proc.returncode

    signal_process_group(proc, signal.SIGTERM)
    try:
        return await asyncio.wait_for(proc.wait(), timeout=grace_seconds)
    except TimeoutError:
        signal_process_group(proc, signal.SIGKILL)
        return await proc.wait()


class ProcessRegistry:
    """Set of processes currently owned by running executions.

    Only touched from the event loop thread, so no locking.
    """

    def __init__(self) -> None:
        self._processes: set[asyncio.subprocess.Process] = set()

    def __len__(self) -> int:
        return len(self._processes)

    def __iter__(self) -> Iterator[asyncio.subprocess.Process]:
        return iter(list(self._processes))

    def add(self, proc: asyncio.subprocess.Process) -> None:
        self._processes.add(proc)

    def discard(self, proc: asyncio.subprocess.Process) -> None:
        self._processes.discard(proc)

    async def shutdown(self, grace_seconds: float = 3.0) -> None:
        """Terminate every process still running."""
        live = [proc for proc in self if proc.returncode is None]
        if not live:
            return

        log.info("terminating_running_processes", count=len(live))
        results = await asyncio.gather(
            *(terminate_process(proc, grace_seconds) for proc in live),
            return_exceptions=True,
        )
        for proc, result in zip(live, results, strict=True):
            if isinstance(result, BaseException):
                log.warning("process_termination_failed", pid=proc.pid, error=str(result))
            self.discard(proc)
