"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (daemon_started, daemon_died, network_connected, etc.)
5. Structlog configuration (configure, get_structlog)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from barwatch.audio import AudioStatus
    from barwatch.config import Config
    from barwatch.network import NetworkStatus

# Rich console for colorful human-readable output
_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    SIGNAL = "⚡"
    DIED = "[bold red]☠[/]"
    CONNECTED = "[green]⬤[/]"
    DISCONNECTED = "[red]⬤[/]"
    WIFI = "[cyan]📶[/]"
    VOLUME = "[magenta]🔊[/]"
    MUTED = "[dim]🔇[/]"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def service_started(daemon_count: int) -> None:
    """Log host service startup complete."""
    suffix = "s" if daemon_count != 1 else ""
    info(f"Service started [dim]({daemon_count} daemon{suffix})[/]", Icon.OK)


def service_stopping() -> None:
    """Log host service shutdown initiated."""
    info("Service stopping...", Icon.WAIT)


def service_stopped() -> None:
    """Log host service shutdown complete."""
    info("Service stopped", Icon.OK)


def signal_received(name: str) -> None:
    """Log signal received."""
    info(f"Received [bold]{name}[/]", Icon.SIGNAL)


def daemon_started(name: str, command: Sequence[str]) -> None:
    """Log a supervised daemon started."""
    info(f"[cyan]{escape(name)}[/] started [dim]({escape(' '.join(command))})[/]", Icon.OK)


def daemon_stopped(name: str) -> None:
    """Log a supervised daemon stopped."""
    info(f"[cyan]{escape(name)}[/] stopped")


def daemon_died(name: str, exit_code: int, stderr: str) -> None:
    """Log a supervised daemon exited on its own."""
    last_line = stderr.strip().splitlines()[-1] if stderr.strip() else ""
    detail = f" [dim]— {escape(last_line)}[/]" if last_line else ""
    error(f"[cyan]{escape(name)}[/] died with exit code [bold]{exit_code}[/]{detail}", Icon.DIED)


def daemon_not_found(name: str) -> None:
    """Log an unknown daemon name."""
    error(f"Unknown daemon [cyan]{escape(name)}[/]", Icon.FAIL)


def network_connected(status: NetworkStatus) -> None:
    """Log a network connection."""
    parts = [f"[bold]{escape(status.name)}[/]", f"[dim]{status.type.value} on {status.device}"]
    if status.signal is not None:
        parts.append(f"{status.signal}%")
    if status.security:
        parts.append(escape(status.security))
    info(" ".join(parts) + "[/]", Icon.CONNECTED)


def network_disconnected() -> None:
    """Log a network disconnection."""
    info("Network disconnected", Icon.DISCONNECTED)


def signal_changed(signal: int) -> None:
    """Log a wifi signal reading."""
    info(f"Signal [cyan]{signal}%[/]", Icon.WIFI)


def volume_changed(status: AudioStatus) -> None:
    """Log default sink volume/mute."""
    if status.muted:
        info(f"Volume [dim]{status.volume_percent}% (muted)[/]", Icon.MUTED)
    else:
        info(f"Volume [cyan]{status.volume_percent}%[/]", Icon.VOLUME)


def default_sink_changed(name: str) -> None:
    """Log a default sink switch."""
    info(f"Default sink [cyan]{escape(name)}[/]")


def monitor_error(exc: Exception) -> None:
    """Log a monitor error."""
    warn(escape(str(exc)))


def already_running(pid: int | None = None) -> None:
    """Log service already running error."""
    if pid:
        error(f"Another barwatch service already running [dim](PID {pid})[/]", Icon.FAIL)
    else:
        error("Another barwatch service already running", Icon.FAIL)


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]")


def config_invalid(message: str) -> None:
    """Log config file rejected."""
    error(f"Invalid config: {escape(message)}", Icon.FAIL)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, source: str = "barwatch") -> None:
    """Configure structlog to write JSON Lines to a rotating log file.

    Human-readable console output goes through the Rich helpers above;
    structlog events are only written to the file.

    Args:
        config: Application config with paths and rotation limits
        source: Value of the "source" field on every record
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)

    # Clear any existing handlers
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog() -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for JSON file output."""
    return structlog.get_logger()
