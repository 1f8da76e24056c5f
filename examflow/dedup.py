"""
Keyed registry of in-flight loads.

At most one request per key is outstanding. Concurrent callers share it;
the entry is dropped as soon as it finishes so the next call starts fresh.
All bookkeeping happens between awaits, so no locking is needed on a
single event loop.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class RequestDeduplicator:
    """Injectable keyed cache of pending asyncio tasks."""

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._in_flight

    def clear(self):
        self._in_flight.clear()

    def __len__(self):
        return len(self._in_flight)

    def __bool__(self):
        # truthy even when empty
        return True

    async def load_once(self, key: str, producer: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run `producer()` unless a request for `key` is already pending.

        A waiter that joined a shared request which then failed does not
        re-raise the stale failure: it drops the entry and issues its own
        request. The caller that started a request gets its result or error.
        """
        pending = self._in_flight.get(key)
        if pending is not None:
            logger.debug(f"Joining in-flight request for {key}")
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Shared request for {key} failed ({e}); issuing a new one")
                if self._in_flight.get(key) is pending:
                    del self._in_flight[key]
            pending = self._in_flight.get(key)
            if pending is not None:
                # someone else already restarted it
                return await asyncio.shield(pending)

        logger.debug(f"Starting request for {key}")
        task = asyncio.ensure_future(producer())
        self._in_flight[key] = task
        task.add_done_callback(lambda done: self._discard(key, done))
        return await asyncio.shield(task)

    def _discard(self, key: str, task: asyncio.Future):
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Request for {key} finished with {task.exception()!r}")


# Process-wide instance shared by orchestrators that aren't given their own.
default_deduplicator = RequestDeduplicator()
