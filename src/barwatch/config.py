"""Configuration system for barwatch."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit


@dataclass
class SystemConfig:
    """Process-wide settings."""

    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


@dataclass
class SupervisorConfig:
    """Daemon supervision settings."""

    stop_timeout: float = 5.0  # Seconds between SIGTERM and SIGKILL on stop


@dataclass
class MonitorsConfig:
    """Event monitor settings."""

    restart_delay: float = 1.0  # Seconds before respawning a watcher that exited
    signal_poll_interval: float = 10.0  # Seconds between wifi signal reads


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit table."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container.

    `daemons` maps a daemon name to the argv it is started with.
    """

    system: SystemConfig = field(default_factory=SystemConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    monitors: MonitorsConfig = field(default_factory=MonitorsConfig)
    daemons: dict[str, list[str]] = field(default_factory=dict)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "barwatch"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "barwatch"

    @property
    def runtime_dir(self) -> Path:
        """Runtime directory for ephemeral files, cleared on reboot."""
        return Path("/tmp/barwatch")

    @property
    def log_path(self) -> Path:
        """Log file path (JSON Lines)."""
        return self.state_dir / "barwatch.log"

    @property
    def pid_path(self) -> Path:
        """PID file path."""
        return self.runtime_dir / "barwatch.pid"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("system", "supervisor", "monitors"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        daemons = tomlkit.table()
        for name, command in self.daemons.items():
            daemons.add(name, list(command))
        doc.add("daemons", daemons)

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ValueError: If the file cannot be parsed or a value is invalid.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            system=_load_system_config(data.get("system", {})),
            supervisor=_load_supervisor_config(data.get("supervisor", {})),
            monitors=_load_monitors_config(data.get("monitors", {})),
            daemons=_load_daemons(data.get("daemons", {})),
        )


def _load_system_config(data: dict) -> SystemConfig:
    d = SystemConfig()
    log_max_bytes = data.get("log_max_bytes", d.log_max_bytes)
    log_backup_count = data.get("log_backup_count", d.log_backup_count)
    if log_max_bytes < 0:
        raise ValueError(f"log_max_bytes must be >= 0, got {log_max_bytes}")
    if log_backup_count < 0:
        raise ValueError(f"log_backup_count must be >= 0, got {log_backup_count}")
    return SystemConfig(log_max_bytes=log_max_bytes, log_backup_count=log_backup_count)


def _load_supervisor_config(data: dict) -> SupervisorConfig:
    d = SupervisorConfig()
    stop_timeout = data.get("stop_timeout", d.stop_timeout)
    if stop_timeout <= 0:
        raise ValueError(f"stop_timeout must be > 0, got {stop_timeout}")
    return SupervisorConfig(stop_timeout=float(stop_timeout))


def _load_monitors_config(data: dict) -> MonitorsConfig:
    d = MonitorsConfig()
    restart_delay = data.get("restart_delay", d.restart_delay)
    signal_poll_interval = data.get("signal_poll_interval", d.signal_poll_interval)
    if restart_delay < 0:
        raise ValueError(f"restart_delay must be >= 0, got {restart_delay}")
    if signal_poll_interval <= 0:
        raise ValueError(f"signal_poll_interval must be > 0, got {signal_poll_interval}")
    return MonitorsConfig(
        restart_delay=float(restart_delay),
        signal_poll_interval=float(signal_poll_interval),
    )


def _load_daemons(data: dict) -> dict[str, list[str]]:
    """Load the [daemons] table: name -> non-empty argv of strings."""
    daemons = {}
    for name, command in data.items():
        if isinstance(command, str) or not command:
            raise ValueError(f"daemons.{name} must be a non-empty array of strings")
        argv = [str(arg) for arg in command]
        daemons[str(name)] = argv
    return daemons
