"""Cooperative cancellation built on ``asyncio.Event``.

A *signal* is any ``asyncio.Event``: once set, every operation that was
given it stops at its next suspension point and raises :class:`AbortError`.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .errors import AbortError

T = TypeVar("T")


def raise_if_aborted(signal: Optional[asyncio.Event]) -> None:
    if signal is not None and signal.is_set():
        raise AbortError()


async def race(
    aw: Awaitable[T],
    signal: Optional[asyncio.Event],
    *,
    on_discard: Optional[Callable[[T], Any]] = None,
) -> T:
    """Await ``aw`` unless ``signal`` fires first.

    If the signal wins, ``aw`` is canceled and :class:`AbortError` is raised.
    A result that arrived in the same iteration is handed to ``on_discard``
    so the caller can release it.
    """
    if signal is None:
        return await aw
    raise_if_aborted(signal)

    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if signal.is_set():
        if not task.done():
            task.cancel()
        # Let the canceled task unwind; its outcome is superseded by the abort.
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is None and on_discard is not None:
            on_discard(task.result())
        raise AbortError()
    return task.result()


async def sleep(delay: float, signal: Optional[asyncio.Event] = None) -> None:
    """``asyncio.sleep`` that wakes up with :class:`AbortError` when ``signal`` fires."""
    await race(asyncio.sleep(delay), signal)


class AbortController:
    """Owns one signal that any number of sources can trip. The first one wins."""

    def __init__(self) -> None:
        self.signal = asyncio.Event()
        self.reason: Optional[str] = None
        self._timers: list[asyncio.TimerHandle] = []
        self._watchers: list[asyncio.Future[bool]] = []

    @property
    def aborted(self) -> bool:
        return self.signal.is_set()

    def abort(self, reason: str = "canceled") -> None:
        if not self.signal.is_set():
            self.reason = reason
            self.signal.set()

    def abort_after(self, delay: float, reason: str = "timeout") -> None:
        """Trip the signal once ``delay`` seconds have elapsed."""
        loop = asyncio.get_running_loop()
        self._timers.append(loop.call_later(delay, self.abort, reason))

    def follow(self, parent: Optional[asyncio.Event]) -> None:
        """Trip the signal whenever ``parent`` is set."""
        if parent is None:
            return
        if parent.is_set():
            self.abort("canceled")
            return
        watcher = asyncio.ensure_future(parent.wait())
        watcher.add_done_callback(self._on_parent_done)
        self._watchers.append(watcher)

    def _on_parent_done(self, watcher: "asyncio.Future[bool]") -> None:
        if not watcher.cancelled():
            self.abort("canceled")

    def close(self) -> None:
        """Release timers and watchers. The signal keeps its current state."""
        for timer in self._timers:
            timer.cancel()
        for watcher in self._watchers:
            watcher.cancel()
        self._timers.clear()
        self._watchers.clear()
