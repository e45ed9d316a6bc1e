"""Subprocess helpers shared by the supervisor, watchers and one-shot queries.

Long-lived children are started in their own session so the whole process
group can be signalled; killing only the direct child would orphan anything
it forked.
"""

import asyncio
import os
import signal
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from barwatch.errors import CommandFailed

log = structlog.get_logger()


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of a one-shot command."""

    argv: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self) -> "CommandResult":
        """Return self, or raise CommandFailed on a non-zero exit code."""
        if self.exit_code != 0:
            raise CommandFailed(self.argv, self.exit_code, self.stderr)
        return self


async def spawn_group(
    argv: Sequence[str],
    *,
    stdout: int | None = asyncio.subprocess.DEVNULL,
    stderr: int | None = asyncio.subprocess.DEVNULL,
) -> asyncio.subprocess.Process:
    """Start argv as the leader of a new process group."""
    return await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=stdout,
        stderr=stderr,
        start_new_session=True,
    )


def signal_group(proc: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    """Send sig to proc's process group, ignoring an already-gone group."""
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, sig)
    except ProcessLookupError:
        pass  # Group already exited
    except PermissionError:
        # Group leader already reaped and the pgid is gone; fall back to the child
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            pass


async def terminate_group(proc: asyncio.subprocess.Process, timeout: float = 5.0) -> int:
    """Stop a process group: SIGTERM, wait up to timeout, then SIGKILL.

    Always reaps the child before returning.

    Returns:
        The child's exit code (negative signal number when killed).
    """
    if proc.returncode is not None:
        return proc.returncode

    signal_group(proc, signal.SIGTERM)
    try:
        return await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("process_group_kill", pid=proc.pid, timeout=timeout)
        signal_group(proc, signal.SIGKILL)
        return await proc.wait()


async def run_command(argv: Sequence[str]) -> CommandResult:
    """Run argv once, capturing stdout and stderr.

    No timeout is applied; callers needing bounded latency wrap this in
    asyncio.wait_for(). Cancellation kills the child.

    Raises:
        OSError: If the executable cannot be started.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass  # Already exited
        await asyncio.shield(proc.wait())
        raise
    result = CommandResult(
        argv=tuple(argv),
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if not result.ok:
        log.debug("command_failed", argv=list(argv), exit_code=result.exit_code)
    return result


async def run_checked(argv: Sequence[str]) -> str:
    """Run argv once and return its stdout.

    Raises:
        CommandFailed: On a non-zero exit code.
        OSError: If the executable cannot be started.
    """
    result = await run_command(argv)
    return result.check().stdout
