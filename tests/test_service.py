"""Tests for the host service."""

import asyncio
import os
from unittest.mock import MagicMock, patch

import psutil
import pytest

from barwatch.config import Config
from barwatch.errors import DaemonNotFound
from barwatch.service import BarService
from barwatch.supervisor import DaemonState
from conftest import pid_alive, wait_until


def _config(**daemons) -> Config:
    config = Config()
    config.supervisor.stop_timeout = 2.0
    config.daemons = {name: list(argv) for name, argv in daemons.items()}
    return config


class TestPidFile:
    """Tests for PID file handling."""

    def test_no_pid_file(self, patched_config_paths):
        service = BarService(_config())
        assert service._check_already_running() is False

    def test_invalid_pid_file_removed(self, patched_config_paths):
        config = _config()
        config.pid_path.parent.mkdir(parents=True)
        config.pid_path.write_text("not-a-pid")

        assert BarService(config)._check_already_running() is False
        assert not config.pid_path.exists()

    def test_stale_pid_file_removed(self, patched_config_paths):
        config = _config()
        config.pid_path.parent.mkdir(parents=True)
        config.pid_path.write_text("999999")

        with patch("barwatch.service.psutil.Process", side_effect=psutil.NoSuchProcess(999999)):
            assert BarService(config)._check_already_running() is False
        assert not config.pid_path.exists()

    def test_recycled_pid_is_stale(self, patched_config_paths):
        """A live PID belonging to another program is not a running service."""
        config = _config()
        config.pid_path.parent.mkdir(parents=True)
        config.pid_path.write_text("4242")
        proc = MagicMock()
        proc.cmdline.return_value = ["/usr/bin/firefox"]
        proc.name.return_value = "firefox"

        with patch("barwatch.service.psutil.Process", return_value=proc):
            assert BarService(config)._check_already_running() is False
        assert not config.pid_path.exists()

    def test_running_service_detected(self, patched_config_paths):
        config = _config()
        config.pid_path.parent.mkdir(parents=True)
        config.pid_path.write_text("4242")
        proc = MagicMock()
        proc.cmdline.return_value = ["/usr/bin/python3", "/usr/bin/barwatch", "run"]

        with patch("barwatch.service.psutil.Process", return_value=proc):
            assert BarService(config)._check_already_running() is True
        assert config.pid_path.exists()

    def test_access_denied_assumes_running(self, patched_config_paths):
        config = _config()
        config.pid_path.parent.mkdir(parents=True)
        config.pid_path.write_text("4242")

        with patch("barwatch.service.psutil.Process", side_effect=psutil.AccessDenied(4242)):
            assert BarService(config)._check_already_running() is True

    def test_remove_only_own_pid_file(self, patched_config_paths):
        config = _config()
        config.pid_path.parent.mkdir(parents=True)
        config.pid_path.write_text("4242")

        BarService(config)._remove_pid_file()

        assert config.pid_path.exists()


class TestLifecycle:
    """Start/stop of configured daemons."""

    @pytest.mark.asyncio
    async def test_starts_all_configured_daemons(self, patched_config_paths):
        config = _config(a=["sleep", "30"], b=["sleep", "30"])
        service = BarService(config)

        await service.start()
        try:
            assert config.pid_path.read_text() == str(os.getpid())
            states = {d.name: d.state.get() for d in await service.supervisor.list()}
            assert states == {"a": DaemonState.RUNNING, "b": DaemonState.RUNNING}
        finally:
            await service.stop()

        assert not config.pid_path.exists()
        states = {d.name: d.state.get() for d in await service.supervisor.list()}
        assert states == {"a": DaemonState.STOPPED, "b": DaemonState.STOPPED}

    @pytest.mark.asyncio
    async def test_starts_only_selected_daemons(self, patched_config_paths):
        config = _config(a=["sleep", "30"], b=["sleep", "30"])
        service = BarService(config, ["b"])

        await service.start()
        try:
            a = await service.supervisor.get("a")
            b = await service.supervisor.get("b")
            assert a.state.get() is DaemonState.STOPPED
            assert b.state.get() is DaemonState.RUNNING
        finally:
            await service.stop()

    @pytest.mark.asyncio
    async def test_unknown_name_raises(self, patched_config_paths):
        service = BarService(_config(a=["sleep", "30"]), ["nope"])

        with pytest.raises(DaemonNotFound):
            await service.run()

    @pytest.mark.asyncio
    async def test_shutdown_request_stops_children(self, patched_config_paths, tmp_path):
        pid_file = tmp_path / "child.pid"
        config = _config(bar=["sh", "-c", f"echo $$ > {pid_file}; exec sleep 30"])
        service = BarService(config)

        run_task = asyncio.create_task(service.run())
        await wait_until(lambda: pid_file.exists() and pid_file.read_text().strip())
        child_pid = int(pid_file.read_text().strip())

        service.request_shutdown()
        await asyncio.wait_for(run_task, timeout=5.0)

        assert service.shutdown_requested
        await wait_until(lambda: not pid_alive(child_pid))

    @pytest.mark.asyncio
    async def test_daemon_death_is_reported(self, patched_config_paths, capsys):
        service = BarService(_config(flaky=["sh", "-c", "echo crashed >&2; exit 1"]))

        await service.start()
        try:
            await wait_until(lambda: "died" in capsys.readouterr().out, timeout=5.0)
        finally:
            await service.stop()
