import asyncio
import logging
from typing import Awaitable, Callable, Optional

from constants import CACHE_SAVE_INTERVAL, TIMER_TICK_SECONDS

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class Countdown:
    """One-tick-per-interval countdown that owns its asyncio task.

    Every ``save_interval``-th remaining value (while still positive) awaits
    ``on_save``; reaching zero awaits ``on_expire`` once and stops the task.
    ``tick()`` can be driven directly, which is how the tests use it.
    """

    def __init__(
        self,
        seconds: int,
        on_save: Optional[Callback] = None,
        on_expire: Optional[Callback] = None,
        save_interval: int = CACHE_SAVE_INTERVAL,
        tick_seconds: float = TIMER_TICK_SECONDS,
    ):
        self.remaining = max(0, int(seconds))
        self.on_save = on_save
        self.on_expire = on_expire
        self.save_interval = save_interval
        self.tick_seconds = tick_seconds
        self.expired = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking on the running event loop; no-op if already running or expired."""
        if self.running or self.expired or self.remaining <= 0:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done() and self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    def reset(self, seconds: int) -> None:
        self.remaining = max(0, int(seconds))
        self.expired = False

    async def tick(self) -> None:
        if self.expired:
            return
        self.remaining = max(0, self.remaining - 1)

        if self.remaining > 0 and self.save_interval and self.remaining % self.save_interval == 0:
            if self.on_save is not None:
                try:
                    await self.on_save()
                except Exception:
                    logger.exception("Countdown save callback failed")

        if self.remaining <= 0:
            self.expired = True
            if self.on_expire is not None:
                await self.on_expire()

    async def _run(self) -> None:
        try:
            while not self.expired:
                await asyncio.sleep(self.tick_seconds)
                await self.tick()
        except asyncio.CancelledError:
            logger.debug("Countdown cancelled with %s seconds remaining", self.remaining)
            raise
        except Exception:
            logger.exception("Countdown loop failed")
