"""CLI commands for barwatch."""

import click


@click.group()
@click.version_option(package_name="barwatch")
def main() -> None:
    """Supervise status-bar helper daemons and watch network/audio state."""
    pass


def _load_config():
    from barwatch import logging as console
    from barwatch.config import Config

    try:
        return Config.load()
    except ValueError as e:
        console.config_invalid(str(e))
        raise SystemExit(1)


@main.command()
@click.argument("names", nargs=-1)
def run(names: tuple[str, ...]) -> None:
    """Run configured daemons until interrupted.

    Starts NAMES, or every daemon in the [daemons] config table.
    """
    import asyncio

    from barwatch import logging as console
    from barwatch.errors import DaemonNotFound
    from barwatch.service import run_service

    config = _load_config()
    if not config.daemons:
        click.echo(f"No daemons configured. Add a [daemons] table to {config.config_path}")
        return

    try:
        asyncio.run(run_service(config, names))
    except DaemonNotFound as e:
        console.daemon_not_found(e.daemon_name)
        raise SystemExit(1)
    except RuntimeError as e:
        console.error(str(e), console.Icon.FAIL)
        raise SystemExit(1)


@main.command()
def daemons() -> None:
    """List configured daemons."""
    config = _load_config()
    if not config.daemons:
        click.echo("No daemons configured.")
        return

    width = max(len(name) for name in config.daemons)
    for name, command in config.daemons.items():
        click.echo(f"{name:<{width}}  {' '.join(command)}")


@main.command()
@click.option("--interval", type=float, default=None, help="Signal poll interval in seconds")
def network(interval: float | None) -> None:
    """Follow network connection and signal changes."""
    import asyncio

    from barwatch import logging as console
    from barwatch.network import NetworkMonitor

    config = _load_config()
    console.configure(config, source="cli")

    async def watch() -> None:
        monitor = NetworkMonitor(
            on_connect=console.network_connected,
            on_disconnect=console.network_disconnected,
            on_signal_change=console.signal_changed,
            on_error=console.monitor_error,
            signal_poll_interval=interval or config.monitors.signal_poll_interval,
            restart_delay=config.monitors.restart_delay,
        )
        monitor.start()
        try:
            await asyncio.Event().wait()
        finally:
            await monitor.aclose()

    try:
        asyncio.run(watch())
    except KeyboardInterrupt:
        pass


@main.command()
def audio() -> None:
    """Follow default sink volume, mute and sink switches."""
    import asyncio

    from barwatch import logging as console
    from barwatch.audio import AudioMonitor

    config = _load_config()
    console.configure(config, source="cli")

    async def watch() -> None:
        monitor = AudioMonitor(
            on_volume_change=console.volume_changed,
            on_default_sink_change=console.default_sink_changed,
            on_error=console.monitor_error,
            restart_delay=config.monitors.restart_delay,
        )
        monitor.start()
        try:
            await asyncio.Event().wait()
        finally:
            await monitor.aclose()

    try:
        asyncio.run(watch())
    except KeyboardInterrupt:
        pass


@main.command("config")
def config_cmd() -> None:
    """Create the config file if missing and print its path."""
    from barwatch import logging as console

    config = _load_config()
    if not config.config_path.exists():
        config.save()
        console.config_created(str(config.config_path))
    click.echo(str(config.config_path))


if __name__ == "__main__":
    main()
