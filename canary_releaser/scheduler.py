"""
Single-dispatcher timer loop.

Two periodic timers (canary polling, stable rollout) feed one dispatcher.
Handlers run one at a time and always to completion, so a long canary
observation stalls the rollout timer rather than overlapping with it. A
timer keeps at most one pending tick; further ticks that arrive before the
dispatcher picks the pending one up are dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from canary_releaser.models import CycleOutcome, CycleResult

logger = logging.getLogger(__name__)

Handler = Callable[[], Awaitable[CycleResult]]


@dataclass
class Timer:
    """A periodic tick source and the handler it triggers."""

    name: str
    period: timedelta
    handler: Handler
    pending: bool = False
    fired: int = 0
    dropped: int = 0


class Dispatcher:
    """Multiplexes periodic timers onto one sequential handler loop."""

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.timers: Dict[str, Timer] = {}
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._sleep = sleep
        self._tasks: List[asyncio.Task] = []
        self._stopping = False

    def add_timer(self, name: str, period: timedelta, handler: Handler) -> Timer:
        timer = Timer(name=name, period=period, handler=handler)
        self.timers[name] = timer
        return timer

    def fire(self, name: str) -> bool:
        """
        Queue a tick for a timer.

        Returns:
            False when the tick was coalesced into one already pending
        """
        timer = self.timers[name]
        if timer.pending:
            timer.dropped += 1
            logger.debug(f"Dropping {name} tick, one is already pending")
            return False
        timer.pending = True
        timer.fired += 1
        self._queue.put_nowait(name)
        return True

    def stop(self) -> None:
        """Stop after the running handler, if any, completes."""
        self._stopping = True
        self._queue.put_nowait(None)

    async def _tick(self, timer: Timer) -> None:
        seconds = timer.period.total_seconds()
        while True:
            await self._sleep(seconds)
            self.fire(timer.name)

    async def run(self) -> None:
        """
        Run until ``stop()`` is called or a handler raises.

        Exceptions from handlers propagate after the timers are cancelled.
        """
        self._stopping = False
        self._tasks = [asyncio.create_task(self._tick(t)) for t in self.timers.values()]
        try:
            while not self._stopping:
                name = await self._queue.get()
                if name is None:
                    break
                await self._dispatch(self.timers[name])
        finally:
            await self._cancel_timers()

    async def run_once(self) -> None:
        """Run every handler exactly once, in registration order, then return."""
        for name in self.timers:
            self.fire(name)
        while not self._queue.empty():
            name = self._queue.get_nowait()
            if name is None:
                break
            await self._dispatch(self.timers[name])

    async def _dispatch(self, timer: Timer) -> None:
        # Cleared first so a tick arriving mid-handler is retained
        timer.pending = False
        result = await timer.handler()
        if result.outcome is CycleOutcome.ROLLED_BACK:
            logger.info(
                f"{timer.name}: rolled back to {result.rollback_tag} after {result.tag} failed",
                extra={"tag": result.tag, "outcome": result.outcome.value},
            )
        else:
            logger.debug(
                f"{timer.name}: {result.outcome.value}",
                extra={"tag": result.tag, "outcome": result.outcome.value},
            )

    async def _cancel_timers(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
