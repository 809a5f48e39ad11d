"""Cancellable deferred actions."""

import asyncio
from typing import Callable, Optional

import structlog

logger = structlog.get_logger()


class DeferredAction:
    """Run a callback once after a delay unless cancelled first.

    Unlike ``loop.call_later`` the action exposes whether it fired, and
    ``cancel`` is deterministic: once it returns, the callback will not run.
    """

    def __init__(self, delay: float, callback: Callable[[], None], name: str = "deferred"):
        self.delay = delay
        self.callback = callback
        self.name = name
        self.fired = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "DeferredAction":
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self

    async def _run(self):
        await asyncio.sleep(self.delay)
        self.fired = True
        logger.debug("Deferred action firing", action=self.name, delay=self.delay)
        try:
            self.callback()
        except Exception:
            logger.exception("Deferred action failed", action=self.name)

    def cancel(self) -> bool:
        """Cancel the pending action. Returns False if it already fired."""
        if self._task is None:
            return True
        if self.fired:
            return False
        self._task.cancel()
        return True

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    async def wait(self):
        """Wait for the action to fire or be cancelled."""
        if self._task is None:
            return
        await asyncio.wait([self._task])
