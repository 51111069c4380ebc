"""Per-run cancellation scope.

A run ends early when either the configured timeout elapses (counted from
the moment the process starts) or the triggering request goes away.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Literal

CancelReason = Literal["timeout", "cancelled"]


@dataclass
class ExecutionContext:
    """Cancellation scope bound to one trigger and, optionally, a timeout."""

    timeout: float | None = None
    trigger_done: asyncio.Event = field(default_factory=asyncio.Event)
    reason: CancelReason | None = field(default=None, init=False)

    def end_trigger(self) -> None:
        """Signal that the triggering request has ended."""
        self.trigger_done.set()

    async def wait_cancelled(self) -> CancelReason:
        """Block until the first cancellation source fires and record it."""
        try:
            await asyncio.wait_for(self.trigger_done.wait(), timeout=self.timeout)
        except TimeoutError:
            self.reason = "timeout"
        else:
            self.reason = "cancelled"
        return self.reason
