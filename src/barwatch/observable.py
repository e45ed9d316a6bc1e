"""Observable value cell.

A StateCell holds a current value and notifies subscribers of every change.
New subscribers always receive the current value first, so "read the value"
and "react to future changes" cannot race.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Generic, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")


class StateCell(Generic[T]):
    """Current value plus change notification.

    Callback watchers run synchronously inside set(). Async subscribers
    (changes()) get their own unbounded queue, so a slow consumer never
    blocks the writer and never misses a value.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._watchers: list[Callable[[T], None]] = []
        self._queues: set[asyncio.Queue[T]] = set()

    def __repr__(self) -> str:
        return f"StateCell({self._value!r})"

    def get(self) -> T:
        """Return the current value."""
        return self._value

    def set(self, value: T) -> None:
        """Replace the value and notify every subscriber.

        Subscribers are notified even when the value is unchanged.
        """
        self._value = value
        for callback in list(self._watchers):
            try:
                callback(value)
            except Exception as e:
                log.exception("state_watcher_failed", error=str(e))
        for queue in self._queues:
            queue.put_nowait(value)

    def watch(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Call callback with the current value now and on every change.

        Returns:
            Function that removes the watcher. Safe to call more than once.
        """
        self._watchers.append(callback)
        callback(self._value)

        def unwatch() -> None:
            if callback in self._watchers:
                self._watchers.remove(callback)

        return unwatch

    async def changes(self) -> AsyncIterator[T]:
        """Yield the current value, then every subsequent value."""
        queue: asyncio.Queue[T] = asyncio.Queue()
        queue.put_nowait(self._value)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    @property
    def subscriber_count(self) -> int:
        """Number of active watchers and async subscribers."""
        return len(self._watchers) + len(self._queues)

    def view(self) -> StateView[T]:
        """Return a read-only view of this cell."""
        return StateView(self)


class StateView(Generic[T]):
    """Read-only access to a StateCell: get, watch and changes, but no set."""

    __slots__ = ("_cell",)

    def __init__(self, cell: StateCell[T]) -> None:
        self._cell = cell

    def __repr__(self) -> str:
        return f"StateView({self._cell.get()!r})"

    def get(self) -> T:
        return self._cell.get()

    def watch(self, callback: Callable[[T], None]) -> Callable[[], None]:
        return self._cell.watch(callback)

    def changes(self) -> AsyncIterator[T]:
        return self._cell.changes()
