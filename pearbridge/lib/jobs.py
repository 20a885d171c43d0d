"""
Owned timer handles for asyncio services.

PeriodicJob : fires a coroutine every *interval* seconds (setInterval-style).
DelayedJob  : fires a coroutine once after *delay* seconds (setTimeout-style).

Both are singletons per owner: ``start``/``schedule`` on a running handle is a
no-op and ``stop``/``cancel`` clears the handle so it can never double-fire.
Each firing runs as its own task, so stopping a job from inside its own
callback never cancels the callback itself.

Usage:
    poll = PeriodicJob("song-poll", 0.5, self.poll_song)
    poll.start()
    ...
    poll.stop()
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

JobCallback = Callable[[], Awaitable[None]]


class _TaskOwner:
    """Keeps references to fired callbacks until they finish."""

    def __init__(self, name: str, callback: JobCallback):
        self.name = name
        self._callback = callback
        self._tasks: set[asyncio.Task] = set()

    def _fire(self) -> None:
        task = asyncio.ensure_future(self._guarded())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guarded(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Job %s failed", self.name)

    async def drain(self) -> None:
        """Wait for callbacks that already fired (tests, shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class PeriodicJob(_TaskOwner):

    def __init__(self, name: str, interval: float, callback: JobCallback):
        super().__init__(name, callback)
        self.interval = interval
        self._ticker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._ticker is not None

    def start(self, interval: float | None = None) -> bool:
        """Start ticking.  Returns False if already running."""
        if self._ticker is not None:
            return False
        if interval is not None:
            self.interval = interval
        self._ticker = asyncio.ensure_future(self._tick())
        logger.debug("Job %s started (every %.3fs)", self.name, self.interval)
        return True

    def stop(self) -> bool:
        """Stop ticking.  Returns False if it was not running."""
        if self._ticker is None:
            return False
        self._ticker.cancel()
        self._ticker = None
        logger.debug("Job %s stopped", self.name)
        return True

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._fire()


class DelayedJob(_TaskOwner):

    def __init__(self, name: str, callback: JobCallback):
        super().__init__(name, callback)
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, delay: float) -> bool:
        """Arm the timer.  Returns False if it is already armed."""
        if self._handle is not None:
            return False
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(max(0.0, delay), self._expire)
        return True

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _expire(self) -> None:
        self._handle = None
        self._fire()
