"""Coalescing debouncer for inbound capability commands.

Rapid successive UI interactions (dragging a temperature slider, tapping
through presets) must result in one API write using the last requested
value. Every caller within the window awaits that single outcome.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")


class CoalescingDebouncer(Generic[_T]):
    """Run a coroutine function once after calls stop arriving for delay seconds.

    State per debounced operation: the pending timer handle, the arguments
    of the latest call, and the futures of every caller waiting for the
    result.
    """

    def __init__(
        self,
        function: Callable[..., Awaitable[_T]],
        delay: float,
        name: str,
    ) -> None:
        self._function = function
        self._delay = delay
        self._name = name
        self._timer: asyncio.TimerHandle | None = None
        self._args: tuple[tuple[Any, ...], dict[str, Any]] = ((), {})
        self._waiters: list[asyncio.Future[_T]] = []
        self._task: asyncio.Task[_T] | None = None

    @property
    def pending(self) -> bool:
        """Return True while a call is waiting for the window to close."""
        return self._timer is not None

    async def async_call(self, *args: Any, **kwargs: Any) -> _T:
        """Schedule a call, superseding any call still in its window.

        Returns:
            The result of the single invocation the window coalesces into.

        """
        loop = asyncio.get_running_loop()

        if self._timer is not None:
            _LOGGER.debug("%s: superseding pending call", self._name)
            self._timer.cancel()

        self._args = (args, kwargs)
        waiter: asyncio.Future[_T] = loop.create_future()
        self._waiters.append(waiter)
        self._timer = loop.call_later(self._delay, self._fire)
        return await waiter

    def _fire(self) -> None:
        self._timer = None
        args, kwargs = self._args
        waiters, self._waiters = self._waiters, []

        _LOGGER.debug(
            "%s: executing with %s %s for %d caller(s)",
            self._name,
            args,
            kwargs,
            len(waiters),
        )
        self._task = asyncio.get_running_loop().create_task(
            self._function(*args, **kwargs)
        )
        self._task.add_done_callback(lambda task: self._resolve(task, waiters))

    @staticmethod
    def _resolve(task: asyncio.Task[_T], waiters: list[asyncio.Future[_T]]) -> None:
        exc = None if task.cancelled() else task.exception()
        for waiter in waiters:
            if waiter.done():
                continue
            if task.cancelled():
                waiter.cancel()
            elif exc is not None:
                waiter.set_exception(exc)
            else:
                waiter.set_result(task.result())

    def cancel(self) -> None:
        """Drop the pending call and cancel every waiting caller."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.cancel()
