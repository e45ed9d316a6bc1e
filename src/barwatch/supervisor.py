"""Supervisor for named background helper processes.

Each registered daemon has an observable run state and, while started, a
supervising asyncio task that owns the child process. Cancelling the task
terminates the child's whole process group before the cancellation completes.

State machine:

    stopped --start()--> running --stop()--> stopped

A daemon that dies on its own ends its supervising task with DaemonDied but
its state stays "running" until stop() is called. Whoever awaits the task
(or watches the logs) is responsible for reacting to the death.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import NoReturn

import structlog

from barwatch.errors import DaemonDied, DaemonNotFound
from barwatch.observable import StateCell, StateView
from barwatch.process import spawn_group, terminate_group

log = structlog.get_logger()

# Bytes of captured stderr kept in logs (the exception keeps everything)
STDERR_LOG_LIMIT = 2000


class DaemonState(Enum):
    """Run state of a supervised daemon."""

    STOPPED = "stopped"
    RUNNING = "running"


@dataclass
class Daemon:
    """A named daemon definition and its supervision bookkeeping."""

    name: str
    command: tuple[str, ...]
    # Registry entries own a StateCell; snapshots carry a read-only StateView
    state: StateCell[DaemonState] | StateView[DaemonState] = field(
        default_factory=lambda: StateCell(DaemonState.STOPPED), compare=False
    )
    task: asyncio.Task | None = field(default=None, compare=False)

    @property
    def is_running(self) -> bool:
        return self.state.get() is DaemonState.RUNNING


def _snapshot(daemon: Daemon) -> Daemon:
    state = daemon.state
    if isinstance(state, StateCell):
        state = state.view()
    return dataclasses.replace(daemon, state=state)


def _validate_command(command: Sequence[str]) -> tuple[str, ...]:
    if isinstance(command, str):
        raise TypeError("command must be an argv sequence, not a string")
    argv = tuple(command)
    if not argv:
        raise ValueError("command must not be empty")
    return argv


class DaemonSupervisor:
    """Registry of named daemons with start/stop supervision.

    All operations are serialized by one lock, so they may be called from
    concurrent tasks. Use as an async context manager to guarantee every
    started daemon is stopped on exit.
    """

    def __init__(self, stop_timeout: float = 5.0) -> None:
        self.stop_timeout = stop_timeout
        self._daemons: dict[str, Daemon] = {}
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> DaemonSupervisor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop_all()

    async def set(self, name: str, command: Sequence[str]) -> None:
        """Register a daemon, or replace the command of an existing one.

        An existing entry keeps its state cell and task; a running daemon
        picks up the new command the next time it is started.
        """
        argv = _validate_command(command)
        async with self._lock:
            existing = self._daemons.get(name)
            if existing is None:
                self._daemons[name] = Daemon(name=name, command=argv)
                log.debug("daemon_registered", daemon=name, command=list(argv))
            else:
                existing.command = argv
                log.debug("daemon_updated", daemon=name, command=list(argv))

    async def start(self, name: str) -> asyncio.Task:
        """Start a daemon under a supervising task.

        Idempotent: starting a running daemon returns its existing task.

        Returns:
            The supervising task. It never returns normally; it ends with
            DaemonDied when the process exits, or is cancelled by stop().

        Raises:
            DaemonNotFound: If name is not registered.
        """
        async with self._lock:
            daemon = self._lookup(name)
            if daemon.is_running and daemon.task is not None:
                return daemon.task

            task = asyncio.create_task(self._supervise(daemon), name=f"daemon:{name}")
            task.add_done_callback(lambda t, d=daemon: self._on_task_done(d, t))
            daemon.state.set(DaemonState.RUNNING)
            daemon.task = task
            log.info("daemon_started", daemon=name, command=list(daemon.command))
            return task

    async def stop(self, name: str) -> None:
        """Stop a daemon, terminating its process group.

        Stopping a daemon without a supervising task is a no-op.

        Raises:
            DaemonNotFound: If name is not registered.
        """
        async with self._lock:
            daemon = self._lookup(name)
            await self._stop_daemon(daemon)

    async def stop_all(self) -> None:
        """Stop every daemon that has a supervising task."""
        async with self._lock:
            for daemon in list(self._daemons.values()):
                await self._stop_daemon(daemon)

    async def list(self) -> list[Daemon]:
        """Return a snapshot of all registered daemons.

        Entries are copies; mutating them does not affect the registry. The
        state is a read-only view of the live cell, so callers can watch it
        but not set it.
        """
        async with self._lock:
            return [_snapshot(d) for d in self._daemons.values()]

    async def get(self, name: str) -> Daemon:
        """Return a snapshot of one daemon.

        Raises:
            DaemonNotFound: If name is not registered.
        """
        async with self._lock:
            return _snapshot(self._lookup(name))

    def _lookup(self, name: str) -> Daemon:
        daemon = self._daemons.get(name)
        if daemon is None:
            raise DaemonNotFound(name)
        return daemon

    async def _stop_daemon(self, daemon: Daemon) -> None:
        task = daemon.task
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            # Re-raise only if our own caller is being cancelled
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
        except DaemonDied:
            pass  # Already reported by _on_task_done
        except OSError:
            pass  # Spawn failure, already reported by _on_task_done

        daemon.task = None
        daemon.state.set(DaemonState.STOPPED)
        log.info("daemon_stopped", daemon=daemon.name)

    async def _supervise(self, daemon: Daemon) -> NoReturn:
        """Run the daemon's process until it exits or the task is cancelled."""
        spawn = asyncio.ensure_future(
            spawn_group(daemon.command, stderr=asyncio.subprocess.PIPE)
        )
        try:
            proc = await asyncio.shield(spawn)
        except asyncio.CancelledError:
            # Cancelled mid-spawn: the child may already exist
            proc = await spawn
            await asyncio.shield(terminate_group(proc, self.stop_timeout))
            raise
        log.debug("daemon_spawned", daemon=daemon.name, pid=proc.pid)
        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            exit_code = await asyncio.shield(terminate_group(proc, self.stop_timeout))
            log.debug("daemon_terminated", daemon=daemon.name, pid=proc.pid, exit_code=exit_code)
            raise

        exit_code = proc.returncode if proc.returncode is not None else -1
        raise DaemonDied(daemon, exit_code, stderr.decode("utf-8", errors="replace"))

    def _on_task_done(self, daemon: Daemon, task: asyncio.Task) -> None:
        """Report how a supervising task ended.

        Retrieving the exception here keeps asyncio from reporting it as
        never retrieved when nobody awaits the task.
        """
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, DaemonDied):
            log.warning(
                "daemon_died",
                daemon=daemon.name,
                exit_code=exc.exit_code,
                stderr=exc.stderr[-STDERR_LOG_LIMIT:],
            )
        elif exc is not None:
            log.error("daemon_spawn_failed", daemon=daemon.name, error=str(exc))
