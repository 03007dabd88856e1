"""
Async Tools
Timeouts, cancellable periodic tasks and delayed calls for the polling loops.
"""

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class AsyncTimeoutError(TimeoutError):
    """Raised when an async operation times out."""
    pass


async def timeout(awaitable: Awaitable[T], seconds: float) -> T:
    """
    Add a timeout to an awaitable.

    Args:
        awaitable: The coroutine to timeout
        seconds: Timeout in seconds

    Returns:
        The result of the awaitable

    Raises:
        AsyncTimeoutError: If the operation times out
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise AsyncTimeoutError(f"Operation timed out after {seconds}s")


def _is_current(task: Optional[asyncio.Task]) -> bool:
    try:
        return task is not None and task is asyncio.current_task()
    except RuntimeError:
        return False


def cancel_task(task: Optional[asyncio.Task]) -> None:
    """Cancel a task unless it is the one currently running."""
    if task is None or task.done() or _is_current(task):
        return
    task.cancel()


class PeriodicTask:
    """
    Fixed-rate repeating coroutine with explicit cancellation.

    Each tick awaits ``func`` to completion before the next one is considered,
    so ticks never overlap. Ticks that fall due while a call is still running
    are dropped and the schedule skips ahead.
    """

    def __init__(
        self,
        func: Callable[[], Awaitable[Any]],
        interval: float,
        *,
        name: str,
        run_immediately: bool = True
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.func = func
        self.interval = interval
        self.name = name
        self.run_immediately = run_immediately
        self.ticks = 0
        self.dropped_ticks = 0
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def start(self) -> None:
        """Arm the timer. Requires a running event loop."""
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name=self.name)

    def stop(self) -> None:
        """Disarm the timer; an in-flight call is cancelled."""
        self._stopped = True
        cancel_task(self._task)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_fire = loop.time()
        if not self.run_immediately:
            next_fire += self.interval

        try:
            while not self._stopped:
                delay = next_fire - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
                if self._stopped:
                    break

                self.ticks += 1
                try:
                    await self.func()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"[async_tools] Periodic task '{self.name}' tick failed: {e}", exc_info=True)

                next_fire += self.interval
                now = loop.time()
                if next_fire < now:
                    skipped = math.ceil((now - next_fire) / self.interval)
                    self.dropped_ticks += skipped
                    next_fire += skipped * self.interval
                    logger.warning(f"[async_tools] Periodic task '{self.name}' overran, dropped {skipped} tick(s)")
        except asyncio.CancelledError:
            logger.debug(f"[async_tools] Periodic task '{self.name}' cancelled")
            raise


def call_later(
    delay: float,
    func: Callable[[], Awaitable[Any]],
    *,
    name: str
) -> asyncio.Task:
    """
    Run ``func`` once after ``delay`` seconds in its own task.

    Exceptions are logged, never propagated; cancel the returned task to
    abort the call.
    """
    async def _delayed():
        try:
            await asyncio.sleep(delay)
            await func()
        except asyncio.CancelledError:
            logger.debug(f"[async_tools] Delayed call '{name}' cancelled")
            raise
        except Exception as e:
            logger.error(f"[async_tools] Delayed call '{name}' failed: {e}", exc_info=True)

    return asyncio.create_task(_delayed(), name=name)
