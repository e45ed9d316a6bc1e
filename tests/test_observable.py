"""Tests for StateCell."""

import asyncio

import pytest

from barwatch.observable import StateCell


def test_get_returns_initial_value():
    """A new cell holds its initial value."""
    cell = StateCell("stopped")
    assert cell.get() == "stopped"


def test_watch_receives_current_then_changes():
    """Watchers are called with the current value, then on every set."""
    cell = StateCell(1)
    seen = []

    cell.watch(seen.append)
    cell.set(2)
    cell.set(2)

    assert seen == [1, 2, 2]


def test_unwatch_stops_notifications():
    """After unwatch, the callback is not called again."""
    cell = StateCell(0)
    seen = []

    unwatch = cell.watch(seen.append)
    unwatch()
    unwatch()
    cell.set(5)

    assert seen == [0]
    assert cell.subscriber_count == 0


def test_failing_watcher_does_not_block_others():
    """An exception in one watcher still lets later watchers run."""
    cell = StateCell("a")
    seen = []

    def broken(value: str) -> None:
        if value == "b":
            raise RuntimeError("watcher broke")

    cell.watch(broken)
    cell.watch(seen.append)
    cell.set("b")

    assert seen == ["a", "b"]
    assert cell.get() == "b"


@pytest.mark.asyncio
async def test_changes_yields_current_and_future_values():
    """changes() starts with the current value and sees every set."""
    cell = StateCell("x")
    received = []

    async def consume() -> None:
        async for value in cell.changes():
            received.append(value)
            if len(received) == 3:
                return

    task = asyncio.create_task(consume())
    await asyncio.sleep(0)
    cell.set("y")
    cell.set("z")
    await asyncio.wait_for(task, timeout=1.0)

    assert received == ["x", "y", "z"]
    assert cell.subscriber_count == 0


def test_view_reads_and_watches_without_set():
    """A view tracks the cell but exposes no setter."""
    cell = StateCell("a")
    view = cell.view()
    seen = []

    view.watch(seen.append)
    cell.set("b")

    assert view.get() == "b"
    assert seen == ["a", "b"]
    assert not hasattr(view, "set")
