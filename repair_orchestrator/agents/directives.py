"""
Directive Channel
=================
Hand-off point between an operator and an interactive run paused at an
attempt boundary.

The orchestrator awaits wait(); the control surface calls send(). Directives
are only consumed at the boundary, so a stop never aborts a running worker.
"""
import asyncio
import logging
from typing import Optional

from repair_orchestrator.core.constants import DIRECTIVES

logger = logging.getLogger(__name__)


class DirectiveChannel:
    """Single-consumer queue of operator directives."""

    def __init__(self) -> None:
        self._queue: Optional[asyncio.Queue] = None
        self.waiting = False

    @property
    def queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def send(self, directive: str) -> None:
        if directive not in DIRECTIVES:
            raise ValueError(f"Unknown directive {directive!r}; expected one of {DIRECTIVES}")
        logger.info("Directive received: %s", directive)
        self.queue.put_nowait(directive)

    async def wait(self) -> str:
        self.waiting = True
        try:
            return await self.queue.get()
        finally:
            self.waiting = False
