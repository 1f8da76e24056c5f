"""Per-phase countdown that ticks on the event loop."""
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CountdownTimer:
    """
    Counts `seconds` down to zero, one tick per `interval`.

    Each tick subtracts exactly one second, so a slow loop delays expiry
    instead of skipping ticks. `on_expire` fires once; `stop()` cancels the
    pending tick and nothing fires afterwards.
    """

    def __init__(self, seconds: int,
                 on_tick: Optional[Callable[[int], None]] = None,
                 on_expire: Optional[Callable[[], None]] = None,
                 interval: float = 1.0,
                 name: str = "countdown"):
        self.total = max(0, int(seconds))
        self.remaining = self.total
        self.interval = interval
        self.name = name
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._task: Optional[asyncio.Task] = None
        self._expired = False
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self):
        if self.running or self._expired or self._stopped:
            return
        logger.info(f"⏱️  Timer {self.name} started ({self.remaining}s)")
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self):
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.debug(f"Timer {self.name} stopped at {self.remaining}s")
        self._task = None

    async def _run(self):
        while self.remaining > 0:
            await asyncio.sleep(self.interval)
            if self._stopped:
                return
            self.remaining -= 1
            if self._on_tick is not None:
                try:
                    self._on_tick(self.remaining)
                except Exception:
                    logger.exception(f"Tick handler for timer {self.name} failed at {self.remaining}s")
        self._fire()

    def _fire(self):
        if self._expired or self._stopped:
            return
        self._expired = True
        logger.info(f"⏱️  Timer {self.name} expired")
        if self._on_expire is not None:
            self._on_expire()
