"""Tests for console helpers and structlog file configuration."""

import json
import logging

import structlog

from barwatch import logging as console
from barwatch.audio import AudioStatus
from barwatch.config import Config
from barwatch.network import ConnectionType, NetworkStatus


def test_configure_writes_json_lines(patched_config_paths):
    """structlog events land in the log file as JSON with ts, level, source."""
    config = Config()
    console.configure(config, source="test")

    structlog.get_logger().info("daemon_stopped", daemon="bar")
    for handler in logging.getLogger().handlers:
        handler.flush()

    record = json.loads(config.log_path.read_text().strip().splitlines()[-1])
    assert record["event"] == "daemon_stopped"
    assert record["daemon"] == "bar"
    assert record["level"] == "info"
    assert record["source"] == "test"
    assert "ts" in record


def test_configure_replaces_handlers(patched_config_paths):
    """Calling configure twice leaves a single file handler."""
    config = Config()
    console.configure(config)
    console.configure(config)

    assert len(logging.getLogger().handlers) == 1


def test_daemon_died_shows_last_stderr_line(capsys):
    console.daemon_died("bar", 3, "warming up\nfatal: no display\n")

    out = capsys.readouterr().out
    assert "bar" in out
    assert "exit code 3" in out
    assert "fatal: no display" in out
    assert "warming up" not in out


def test_daemon_started_escapes_markup(capsys):
    """Names and argv are printed literally, not as Rich markup."""
    console.daemon_started("[red]bar", ["echo", "[bold]x"])

    out = capsys.readouterr().out
    assert "[red]bar" in out
    assert "echo [bold]x" in out


def test_network_connected_includes_signal(capsys):
    status = NetworkStatus(
        name="Home", type=ConnectionType.WIFI, device="wlan0", signal=46, security="WPA2"
    )
    console.network_connected(status)

    out = capsys.readouterr().out
    assert "Home" in out
    assert "wifi on wlan0" in out
    assert "46%" in out


def test_volume_changed_muted(capsys):
    console.volume_changed(AudioStatus(volume_percent=30, muted=True))
    assert "30% (muted)" in capsys.readouterr().out
