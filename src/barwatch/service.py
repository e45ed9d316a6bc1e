"""Host service: run the configured daemons under one supervisor."""

import asyncio
import os
import signal
from collections.abc import Sequence

import psutil
import structlog

from barwatch import logging as console
from barwatch.config import Config
from barwatch.errors import DaemonDied, DaemonNotFound
from barwatch.supervisor import DaemonSupervisor

log = structlog.get_logger()


class BarService:
    """Registers configured daemons, starts them and stops them on shutdown.

    Daemon deaths are reported but not acted on; a dead daemon keeps its
    "running" state until stopped.
    """

    def __init__(self, config: Config, names: Sequence[str] | None = None) -> None:
        self.config = config
        self.names = list(names) if names else list(config.daemons)
        self.supervisor = DaemonSupervisor(stop_timeout=config.supervisor.stop_timeout)
        self._shutdown_event = asyncio.Event()
        self._watch_tasks: list[asyncio.Task] = []

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def start(self) -> None:
        """Register every configured daemon and start the selected ones.

        Raises:
            DaemonNotFound: If a selected name is not in the config.
            RuntimeError: If another service instance is running.
        """
        log.info("service_starting", daemons=self.names)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        if self._check_already_running():
            raise RuntimeError("Service is already running")
        self._write_pid_file()

        for name, command in self.config.daemons.items():
            await self.supervisor.set(name, command)

        for name in self.names:
            if name not in self.config.daemons:
                raise DaemonNotFound(name)
            task = await self.supervisor.start(name)
            console.daemon_started(name, self.config.daemons[name])
            self._watch_tasks.append(asyncio.create_task(self._report_death(name, task)))

        log.info("service_started", daemons=len(self.names))
        console.service_started(len(self.names))

    async def run(self) -> None:
        """Start, wait for a shutdown signal, then stop."""
        try:
            await self.start()
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop all daemons and remove the PID file."""
        log.info("service_stopping")
        console.service_stopping()

        for task in self._watch_tasks:
            task.cancel()
        self._watch_tasks.clear()

        for daemon in await self.supervisor.list():
            if daemon.task is not None:
                await self.supervisor.stop(daemon.name)
                console.daemon_stopped(daemon.name)

        self._remove_pid_file()
        log.info("service_stopped")
        console.service_stopped()

    async def _report_death(self, name: str, task: asyncio.Task) -> None:
        try:
            await asyncio.shield(task)
        except DaemonDied as e:
            console.daemon_died(name, e.exit_code, e.stderr)
        except OSError as e:
            console.error(f"[cyan]{name}[/] failed to start: {e}", console.Icon.FAIL)
        except asyncio.CancelledError:
            pass

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self._shutdown_event.set()

    def _write_pid_file(self) -> None:
        """Write PID file."""
        self.config.pid_path.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_path.write_text(str(os.getpid()))
        log.debug("pid_file_written", path=str(self.config.pid_path))

    def _remove_pid_file(self) -> None:
        """Remove PID file if it is ours."""
        path = self.config.pid_path
        if path.exists() and path.read_text().strip() == str(os.getpid()):
            path.unlink()
            log.debug("pid_file_removed")

    def _check_already_running(self) -> bool:
        """Check if another service instance is running.

        Verifies not just that a process with the PID exists, but that it's
        actually barwatch, so a recycled PID after reboot is treated as stale.
        """
        path = self.config.pid_path
        if not path.exists():
            return False

        try:
            pid = int(path.read_text().strip())
        except ValueError:
            log.warning("pid_file_invalid", reason="not a number")
            path.unlink()
            return False

        if pid == os.getpid():
            return False

        try:
            proc = psutil.Process(pid)
            cmdline_str = " ".join(proc.cmdline()).lower()
        except psutil.NoSuchProcess:
            log.warning("pid_file_stale", reason="process not found", pid=pid)
            path.unlink()
            return False
        except psutil.AccessDenied:
            # Can't inspect process - assume it's running to be safe
            log.warning("pid_check_access_denied", pid=pid)
            return True

        if "barwatch" in cmdline_str:
            log.info("service_already_running", pid=pid)
            console.already_running(pid)
            return True

        log.warning(
            "pid_file_stale", reason="different process", pid=pid, actual_process=proc.name()
        )
        path.unlink()
        return False


async def run_service(config: Config | None = None, names: Sequence[str] | None = None) -> None:
    """Run the host service until SIGINT/SIGTERM.

    Args:
        config: Optional config, loads from file if not provided
        names: Daemons to start; all configured daemons when empty
    """
    if config is None:
        config = Config.load()

    console.configure(config)
    service = BarService(config, names)

    try:
        await service.run()
    except Exception as e:
        log.exception("service_crashed", error=str(e))
        raise
