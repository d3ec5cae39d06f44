"""Cancellation tokens for collaborator calls."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from recipe_engine.core.config import settings
from recipe_engine.core.errors import CancelledByOperator, CollaboratorError

logger = logging.getLogger(__name__)

# Returns a reason string when the owning job should stop, else None
CancelProbe = Callable[[], Awaitable[Optional[str]]]


class CancelToken:
    """Deadline plus a cancellation probe, handed to every collaborator call.

    `run()` races the call against the deadline and the probe, so a job that
    is paused or cancelled while a call is outstanding stops at that call
    instead of waiting for it to return.
    """

    def __init__(
        self,
        probe: Optional[CancelProbe] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        self._probe = probe
        self.timeout = settings.COLLABORATOR_TIMEOUT if timeout is None else timeout
        self.poll_interval = poll_interval or settings.CANCEL_POLL_INTERVAL
        self.deadline = time.monotonic() + self.timeout if self.timeout else None

    @classmethod
    def none(cls) -> "CancelToken":
        """Token that never cancels and has no deadline."""
        return cls(probe=None, timeout=0)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    async def check(self) -> None:
        """Raise CancelledByOperator if the probe reports a stop."""
        if self._probe is None:
            return
        reason = await self._probe()
        if reason:
            raise CancelledByOperator(reason)

    async def run(self, awaitable: Awaitable[Any]) -> Any:
        """Await a collaborator call, interrupting it on cancel or deadline."""
        task = asyncio.ensure_future(awaitable)
        try:
            while True:
                wait_for = self.poll_interval if self._probe else None
                remaining = self.remaining()
                if remaining is not None:
                    if remaining <= 0:
                        raise CollaboratorError(f"Collaborator call timed out after {self.timeout:.0f}s")
                    wait_for = remaining if wait_for is None else min(wait_for, remaining)

                done, _ = await asyncio.wait({task}, timeout=wait_for)
                if task in done:
                    return task.result()

                await self.check()
        finally:
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                logger.info("Interrupted outstanding collaborator call")
