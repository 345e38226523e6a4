import asyncio
from typing import Awaitable, Callable, Optional

SleepFn = Callable[[float], Awaitable[None]]
TickFn = Callable[[], Awaitable[bool]]


class ScheduledTask:
    """Handle for a repeating coroutine running on the event loop.

    ``cancel()`` is safe to call at any time, any number of times, including
    after the task has finished on its own.
    """

    def __init__(self, name: str, task: "asyncio.Task[None]") -> None:
        self.name = name
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    def cancel(self) -> None:
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


def schedule_repeating(
    tick: TickFn,
    *,
    interval_sec: float,
    name: str,
    sleep: Optional[SleepFn] = None,
) -> ScheduledTask:
    """Run ``tick`` every ``interval_sec`` until it returns False or the handle is cancelled.

    The first tick happens after one interval, not immediately.
    """
    sleep_fn = sleep or asyncio.sleep

    async def runner() -> None:
        while True:
            await sleep_fn(interval_sec)
            if not await tick():
                return

    task = asyncio.get_running_loop().create_task(runner(), name=name)
    return ScheduledTask(name, task)
