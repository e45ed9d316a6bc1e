"""Tests for configuration system."""

import pytest

from barwatch.config import Config, MonitorsConfig, SupervisorConfig, SystemConfig


def test_system_config_defaults():
    """SystemConfig has correct defaults."""
    config = SystemConfig()
    assert config.log_max_bytes == 5 * 1024 * 1024
    assert config.log_backup_count == 3


def test_supervisor_config_defaults():
    """SupervisorConfig has correct defaults."""
    assert SupervisorConfig().stop_timeout == 5.0


def test_monitors_config_defaults():
    """MonitorsConfig has correct defaults."""
    config = MonitorsConfig()
    assert config.restart_delay == 1.0
    assert config.signal_poll_interval == 10.0


def test_config_paths():
    """Config provides correct paths."""
    config = Config()
    assert "barwatch" in str(config.config_dir)
    assert config.config_path.name == "config.toml"
    assert config.log_path.name == "barwatch.log"
    assert config.pid_path.name == "barwatch.pid"


def test_load_missing_file_returns_defaults(tmp_path):
    """A missing config file yields defaults."""
    config = Config.load(tmp_path / "missing.toml")
    assert config == Config()


def test_save_and_load_preserves_values(tmp_path):
    """Saved values are read back, including the daemons table."""
    path = tmp_path / "config.toml"
    config = Config()
    config.supervisor.stop_timeout = 2.5
    config.monitors.signal_poll_interval = 1.0
    config.daemons = {"clock": ["date", "+%H:%M"], "bar": ["waybar"]}
    config.save(path)

    loaded = Config.load(path)

    assert loaded.supervisor.stop_timeout == 2.5
    assert loaded.monitors.signal_poll_interval == 1.0
    assert loaded.daemons == {"clock": ["date", "+%H:%M"], "bar": ["waybar"]}


def test_load_partial_file_fills_defaults(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('[daemons]\nnotify = ["mako"]\n')

    config = Config.load(path)

    assert config.daemons == {"notify": ["mako"]}
    assert config.supervisor.stop_timeout == 5.0
    assert config.monitors.restart_delay == 1.0


def test_load_invalid_toml(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[supervisor\nstop_timeout = ")

    with pytest.raises(ValueError, match="Failed to parse"):
        Config.load(path)


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("[supervisor]\nstop_timeout = 0\n", "stop_timeout"),
        ("[monitors]\nrestart_delay = -1\n", "restart_delay"),
        ("[monitors]\nsignal_poll_interval = 0\n", "signal_poll_interval"),
        ("[system]\nlog_backup_count = -2\n", "log_backup_count"),
        ('[daemons]\nbar = "waybar --config x"\n', "daemons.bar"),
        ("[daemons]\nbar = []\n", "daemons.bar"),
    ],
)
def test_load_rejects_invalid_values(tmp_path, content, message):
    path = tmp_path / "config.toml"
    path.write_text(content)

    with pytest.raises(ValueError, match=message):
        Config.load(path)
