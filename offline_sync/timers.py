"""
Cancellable, re-armable timers on top of asyncio tasks.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[object]]


class CancellableTimer:
    """
    A single scheduled callback that can be cancelled and re-armed.

    Scheduling while a previous schedule is still sleeping cancels it first, so
    callbacks never stack (trailing-edge debounce). Once the delay has elapsed
    the callback runs to completion; ``cancel()`` no longer affects it.
    """

    def __init__(self, name: str = "timer"):
        self.name = name
        self._handle: Optional[asyncio.Task] = None
        self._running: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """True while a schedule is armed and still sleeping."""
        return self._handle is not None and not self._handle.done()

    @property
    def running(self) -> bool:
        """True while a fired callback is still executing."""
        return bool(self._running)

    def schedule(self, delay: float, callback: TimerCallback) -> None:
        """Arm the timer, replacing any pending schedule. Needs a running loop."""
        self.cancel()
        self._handle = asyncio.get_running_loop().create_task(
            self._fire_after(max(delay, 0.0), callback),
            name=f"{self.name}-timer",
        )

    def cancel(self) -> bool:
        """Cancel a pending schedule. Returns True if one was cancelled."""
        handle, self._handle = self._handle, None
        if handle is not None and not handle.done():
            handle.cancel()
            return True
        return False

    async def _fire_after(self, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)

        task = asyncio.current_task()
        if self._handle is task:
            self._handle = None
        self._running.add(task)
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"{self.name} callback failed")
        finally:
            self._running.discard(task)

    async def wait(self) -> None:
        """Wait for the pending schedule and any running callback to finish."""
        tasks = list(self._running)
        if self._handle is not None:
            tasks.append(self._handle)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel everything, including a callback that is already running."""
        tasks = list(self._running)
        if self._handle is not None:
            tasks.append(self._handle)
        self._handle = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
