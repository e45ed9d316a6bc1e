"""Turn a long-lived, line-emitting child process into an event stream.

ProcessWatcher spawns a command, decodes its stdout into lines, maps each
line through a parser and hands non-None results to an async handler. When
the child exits for any reason other than stop(), it is spawned again after
a fixed delay. There is no backoff and no retry cap: the watched tools
(nmcli monitor, pactl subscribe) only exit when their server restarts.
"""

from __future__ import annotations

import asyncio
import codecs
import signal
from collections.abc import Awaitable, Callable, Sequence
from typing import Generic, TypeVar

import structlog

from barwatch.process import signal_group, spawn_group

log = structlog.get_logger()

EventT = TypeVar("EventT")

READ_CHUNK_SIZE = 4096


class LineBuffer:
    """Incremental UTF-8 decoder that splits a byte stream into lines.

    Multi-byte characters split across chunks are held back until complete;
    the trailing partial line is kept until its newline arrives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        """Text received after the last newline."""
        return self._pending

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every line it completed (without newlines)."""
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        return lines


class ProcessWatcher(Generic[EventT]):
    """Supervised line-protocol watcher with automatic restart.

    Args:
        command: argv of the long-lived child
        parser: Maps one line to an event, or None for irrelevant lines
        on_event: Awaited for each event, in order
        on_error: Receives parser, handler and stream errors while not stopped
        restart_delay: Seconds between an unexpected exit and the respawn
        name: Label used in log events
    """

    def __init__(
        self,
        command: Sequence[str],
        parser: Callable[[str], EventT | None],
        on_event: Callable[[EventT], Awaitable[None]],
        on_error: Callable[[Exception], None] | None = None,
        restart_delay: float = 1.0,
        name: str | None = None,
    ) -> None:
        self.command = tuple(command)
        self.parser = parser
        self.on_event = on_event
        self.on_error = on_error
        self.restart_delay = restart_delay
        self.name = name or self.command[0]

        self.restarts = 0
        self._stopped = False
        self._proc: asyncio.subprocess.Process | None = None
        self._task: asyncio.Task | None = None
        self._restart_handle: asyncio.TimerHandle | None = None

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def pid(self) -> int | None:
        """PID of the current child, if one is alive."""
        if self._proc is None or self._proc.returncode is not None:
            return None
        return self._proc.pid

    def start(self) -> None:
        """Spawn the child in a background task. No-op once stopped.

        Must be called from a running event loop.
        """
        if self._stopped:
            return
        self._restart_handle = None
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"watcher:{self.name}"
        )

    def stop(self) -> None:
        """Stop watching: kill the child and cancel any pending restart.

        Idempotent. The child's process group gets SIGKILL so a wedged
        tool cannot keep the watcher alive.
        """
        if self._stopped:
            return
        self._stopped = True
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        if self._proc is not None:
            signal_group(self._proc, signal.SIGKILL)
        log.debug("watcher_stopped", watcher=self.name)

    async def aclose(self) -> None:
        """Stop and wait for the current run to wind down."""
        self.stop()
        if self._task is not None and not self._task.done():
            await self._task

    def _report(self, error: Exception) -> None:
        if self._stopped:
            return
        log.warning("watcher_error", watcher=self.name, error=str(error))
        if self.on_error is not None:
            self.on_error(error)

    def _schedule_restart(self) -> None:
        if self._stopped:
            return
        self.restarts += 1
        log.info(
            "watcher_restart_scheduled",
            watcher=self.name,
            delay=self.restart_delay,
            restarts=self.restarts,
        )
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(self.restart_delay, self.start)

    async def _run(self) -> None:
        try:
            proc = await spawn_group(self.command, stdout=asyncio.subprocess.PIPE)
        except OSError as e:
            self._report(e)
            self._schedule_restart()
            return

        self._proc = proc
        log.debug("watcher_spawned", watcher=self.name, pid=proc.pid)
        if self._stopped:
            # stop() raced with the spawn
            signal_group(proc, signal.SIGKILL)

        try:
            await self._read_loop(proc.stdout)
        except Exception as e:
            # Child keeps running; only its exit triggers a restart
            self._report(e)

        exit_code = await proc.wait()
        log.debug("watcher_exited", watcher=self.name, pid=proc.pid, exit_code=exit_code)
        self._schedule_restart()

    async def _read_loop(self, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            raise ValueError(f"{self.name}: stdout was not captured")

        lines = LineBuffer()
        while not self._stopped:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            for line in lines.feed(chunk):
                if self._stopped:
                    return
                try:
                    event = self.parser(line)
                    if event is not None:
                        await self.on_event(event)
                except Exception as e:
                    self._report(e)
