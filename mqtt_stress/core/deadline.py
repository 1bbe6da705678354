"""
Run deadline for MQTT Stress.
A single level-triggered cancellation signal shared by every worker and the reporting loop.
"""

import asyncio
import logging
from typing import Optional


class RunDeadline:
    """
    Fires once, either when the run duration elapses or when `fire()` is called early
    (e.g. on SIGINT). Once fired it stays fired.

    Publish loops and the reporting loop poll `fired` at loop boundaries; nothing here
    interrupts an in-flight sleep or acknowledgment wait, so shutdown latency is bounded
    by one message delay plus the disconnect grace period.
    """

    def __init__(self, run_for: float):
        self.run_for = run_for
        self.reason: Optional[str] = None
        self.logger = logging.getLogger(__name__)
        self._event = asyncio.Event()
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def start(self) -> "RunDeadline":
        """Schedule the deadline on the running event loop."""
        if self._timer is None and not self.fired:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.run_for, self.fire, "run duration elapsed")
        return self

    def fire(self, reason: str = "cancelled") -> None:
        if self.fired:
            return
        self.reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
        self.logger.debug(f"Run deadline fired: {reason}")
