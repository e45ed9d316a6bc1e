"""Exception hierarchy for barwatch.

Every failure raised by this package is one of the concrete classes below,
so handlers can match on type instead of inspecting messages.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from barwatch.supervisor import Daemon


class BarwatchError(Exception):
    """Base class for all barwatch errors."""


class DaemonNotFound(BarwatchError):
    """Raised when a supervisor operation names an unregistered daemon."""

    def __init__(self, daemon_name: str) -> None:
        super().__init__(f"Daemon not found: {daemon_name!r}")
        self.daemon_name = daemon_name


class DaemonDied(BarwatchError):
    """Terminal result of a supervising task: the daemon's process exited.

    Raised for every exit, including exit code 0, since a daemon is expected
    to run until stopped.
    """

    def __init__(self, daemon: Daemon, exit_code: int, stderr: str) -> None:
        super().__init__(f"Daemon {daemon.name!r} exited with code {exit_code}")
        self.daemon = daemon
        self.exit_code = exit_code
        self.stderr = stderr


class CommandFailed(BarwatchError):
    """A one-shot command returned a non-zero exit code."""

    def __init__(self, argv: Sequence[str], exit_code: int, stderr: str) -> None:
        detail = stderr.strip()
        message = f"{argv[0]} failed with exit code {exit_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.argv = tuple(argv)
        self.exit_code = exit_code
        self.stderr = stderr
