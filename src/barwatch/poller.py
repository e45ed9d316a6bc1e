"""Fixed-interval polling task.

Used for fast-path reads of cheap kernel-exposed values, so a monitor does
not have to invoke a CLI on every tick.
"""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

log = structlog.get_logger()


class Poller:
    """Run an async tick function every interval seconds until stopped.

    The first tick happens one interval after start(). A failing tick is
    logged and polling continues.
    """

    def __init__(
        self,
        interval: float,
        tick: Callable[[], Awaitable[None]],
        name: str = "poller",
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self.interval = interval
        self.tick = tick
        self.name = name
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name=f"poller:{self.name}"
        )

    def stop(self) -> None:
        """Stop polling. Idempotent."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                log.error("poll_tick_failed", poller=self.name, error=str(e))
