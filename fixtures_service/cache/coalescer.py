"""
Request coalescing to prevent duplicate origin renders.

When multiple concurrent requests ask for the same key, only one
render-and-persist runs and all requesters share its result.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress fetch for one key."""
    task: asyncio.Task
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one fetch.

    Pattern:
    - First request for a key starts the fetch as its own task
    - Subsequent requests for the same key await that task
    - When the task completes, every caller gets the same result or exception
    - Callers await through asyncio.shield, so one caller going away
      (e.g. an aborted HTTP request) never cancels the shared fetch

    Usage:
        coalescer = RequestCoalescer()
        result = await coalescer.get_or_fetch(
            cache_key="current",
            fetch_fn=lambda: refresh_current(),
        )
    """

    def __init__(self, timeout: float = 120.0):
        """
        Initialize the coalescer.

        Args:
            timeout: Max seconds a caller waits for an in-flight fetch
        """
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._timeout = timeout

    async def get_or_fetch(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Either join an existing in-flight fetch or start a new one.

        Args:
            cache_key: Unique key for this request
            fetch_fn: Coroutine function to call if we need to fetch

        Returns:
            The fetched data (shared among all concurrent callers)

        Raises:
            TimeoutError: If waiting for the in-flight fetch times out
            Exception: Any error from fetch_fn is propagated to every caller
        """
        # Check-and-insert runs without an await in between, so it is atomic
        # on the event loop
        in_flight = self._in_flight.get(cache_key)
        if in_flight is not None:
            in_flight.waiter_count += 1
            logger.debug(
                f"Coalescing request for {cache_key} "
                f"(waiters: {in_flight.waiter_count})"
            )
        else:
            logger.debug(f"Initiating fetch for {cache_key}")
            task = asyncio.ensure_future(fetch_fn())
            in_flight = InFlightRequest(task=task)
            self._in_flight[cache_key] = in_flight
            task.add_done_callback(lambda t: self._finish(cache_key, t))

        try:
            return await asyncio.wait_for(asyncio.shield(in_flight.task), self._timeout)
        except asyncio.TimeoutError:
            logger.error(f"Timeout waiting for coalesced request: {cache_key}")
            raise TimeoutError(f"Request for {cache_key} timed out after {self._timeout}s")

    def _finish(self, cache_key: str, task: asyncio.Task) -> None:
        """Drop the finished fetch so the next miss starts a new one."""
        current = self._in_flight.get(cache_key)
        if current is not None and current.task is task:
            del self._in_flight[cache_key]

        if task.cancelled():
            logger.warning(f"Fetch cancelled for {cache_key}")
            return
        # Retrieving the exception marks it handled even if every caller left
        error = task.exception()
        if error is not None:
            logger.warning(f"Fetch failed for {cache_key}: {error}")

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight fetches."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
        }
