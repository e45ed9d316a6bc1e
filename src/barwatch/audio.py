"""PulseAudio/PipeWire integration through pactl.

One-shot queries use `pactl --format=json` where available. AudioMonitor
follows `pactl subscribe` and re-queries the default sink whenever a sink
or the server changes.

See https://www.freedesktop.org/wiki/Software/PulseAudio/Documentation/User/CLI/
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from barwatch.errors import BarwatchError
from barwatch.process import run_checked
from barwatch.watcher import ProcessWatcher

log = structlog.get_logger()

SUBSCRIBE_COMMAND = ("pactl", "subscribe")
DEFAULT_SINK = "@DEFAULT_SINK@"

# pactl allows boosting past this; AudioStatus reports at most 150%
MAX_VOLUME_PERCENT = 150


class DeviceState(Enum):
    """Device state as reported by the audio server (pulse/def.h)."""

    RUNNING = "RUNNING"
    IDLE = "IDLE"
    SUSPENDED = "SUSPENDED"
    INVALID_STATE = "INVALID_STATE"


class AudioEventAction(Enum):
    NEW = "new"
    CHANGE = "change"
    REMOVE = "remove"


class AudioObjectType(Enum):
    SINK = "sink"
    SOURCE = "source"
    SERVER = "server"
    CLIENT = "client"
    CARD = "card"
    SINK_INPUT = "sink-input"
    SOURCE_OUTPUT = "source-output"
    MODULE = "module"


@dataclass(frozen=True)
class AudioEvent:
    """One decoded line of `pactl subscribe` output."""

    action: AudioEventAction
    object: AudioObjectType
    index: int


@dataclass(frozen=True)
class AudioStatus:
    """Volume and mute state of the default sink."""

    volume_percent: int  # 0-150
    muted: bool


@dataclass
class AudioDevice:
    """A sink or source from `pactl list`."""

    index: int
    name: str
    description: str
    type: str  # "sink" or "source"
    state: DeviceState | None = None
    mute: bool | None = None
    # Channel name -> {"value": int, "value_percent": "45%", "db": "-20.81 dB"}
    volume: dict[str, dict[str, Any]] | None = None

    @property
    def volume_percent(self) -> int | None:
        """Volume of the first channel in percent, if reported."""
        if not self.volume:
            return None
        first = next(iter(self.volume.values()))
        return parse_percent(first["value_percent"])


# --- Parsing ---

_SUBSCRIBE_RE = re.compile(r"^Event '(\w+)' on ([\w-]+) #(\d+)$")


def parse_subscribe_line(line: str) -> AudioEvent | None:
    """Parse a `pactl subscribe` line like "Event 'change' on sink #56".

    Returns:
        The event, or None for malformed lines and unknown actions/objects.
    """
    match = _SUBSCRIBE_RE.match(line)
    if not match:
        return None
    action, obj, index = match.groups()
    try:
        return AudioEvent(
            action=AudioEventAction(action),
            object=AudioObjectType(obj),
            index=int(index),
        )
    except ValueError:
        return None


def parse_percent(value: str) -> int:
    """Parse a pactl percentage such as " 45%" into 45."""
    return int(value.strip().rstrip("%"))


def _parse_state(value: str | None) -> DeviceState | None:
    if value is None:
        return None
    try:
        return DeviceState(value)
    except ValueError:
        return DeviceState.INVALID_STATE


def parse_devices(output: str, device_type: str) -> list[AudioDevice]:
    """Parse `pactl --format=json list sinks|sources` output.

    Raises:
        ValueError: If the output is not valid JSON.
    """
    return [
        AudioDevice(
            index=raw["index"],
            name=raw["name"],
            description=raw.get("description", ""),
            type=device_type,
            state=_parse_state(raw.get("state")),
            mute=raw.get("mute"),
            volume=raw.get("volume"),
        )
        for raw in json.loads(output)
    ]


def parse_volume(volume_output: str, mute_output: str) -> AudioStatus:
    """Combine `get-sink-volume` and `get-sink-mute` JSON responses.

    The first channel's percentage is used, clamped to 0-150.

    Raises:
        ValueError: On invalid JSON or a response without channels.
    """
    volume_data = json.loads(volume_output)
    mute_data = json.loads(mute_output)

    channels = list(volume_data.get("volume", {}).values())
    if not channels:
        raise ValueError("No volume channels found in pactl response")
    return AudioStatus(
        volume_percent=min(max(parse_percent(channels[0]["value_percent"]), 0), MAX_VOLUME_PERCENT),
        muted=bool(mute_data["mute"]),
    )


# --- One-shot queries ---


async def list_sinks() -> list[AudioDevice]:
    """List audio output devices."""
    return parse_devices(await run_checked(["pactl", "--format=json", "list", "sinks"]), "sink")


async def list_sources() -> list[AudioDevice]:
    """List audio input devices."""
    output = await run_checked(["pactl", "--format=json", "list", "sources"])
    return parse_devices(output, "source")


async def get_default_sink() -> str:
    return (await run_checked(["pactl", "get-default-sink"])).strip()


async def set_default_sink(name: str) -> None:
    await run_checked(["pactl", "set-default-sink", name])


async def get_default_source() -> str:
    return (await run_checked(["pactl", "get-default-source"])).strip()


async def set_default_source(name: str) -> None:
    await run_checked(["pactl", "set-default-source", name])


async def get_default_sink_volume() -> AudioStatus:
    """Return volume and mute of the default sink.

    Both queries run concurrently.

    Raises:
        CommandFailed: If either pactl call exits non-zero.
        ValueError: If pactl's JSON cannot be interpreted.
    """
    volume_output, mute_output = await asyncio.gather(
        run_checked(["pactl", "--format=json", "get-sink-volume", DEFAULT_SINK]),
        run_checked(["pactl", "--format=json", "get-sink-mute", DEFAULT_SINK]),
    )
    return parse_volume(volume_output, mute_output)


# --- Monitor ---


class AudioMonitor:
    """Push default-sink volume/mute and default-sink switches to callbacks.

    Reacts to two subscribe events:
    - change on sink: volume or mute edited; re-query the volume
    - change on server: the default sink may have switched; re-query the
      default sink name, then its volume (in that order)
    """

    def __init__(
        self,
        on_volume_change: Callable[[AudioStatus], None] | None = None,
        on_default_sink_change: Callable[[str], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        restart_delay: float = 1.0,
        command: Sequence[str] = SUBSCRIBE_COMMAND,
    ) -> None:
        self.on_volume_change = on_volume_change
        self.on_default_sink_change = on_default_sink_change
        self.on_error = on_error

        self._stopped = False
        self._init_task: asyncio.Task | None = None
        self._watcher: ProcessWatcher[AudioEvent] = ProcessWatcher(
            command,
            parse_subscribe_line,
            self._handle_event,
            on_error=self._report,
            restart_delay=restart_delay,
            name="pactl-subscribe",
        )

    @property
    def watcher(self) -> ProcessWatcher[AudioEvent]:
        return self._watcher

    def start(self) -> None:
        """Begin monitoring in the background. Requires a running loop."""
        if self._stopped or self._init_task is not None:
            return
        self._init_task = asyncio.get_running_loop().create_task(
            self._init(), name="audio-monitor-init"
        )

    def stop(self) -> None:
        """Stop the watcher. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._watcher.stop()

    async def aclose(self) -> None:
        """Stop and wait for the watcher's child to be reaped."""
        self.stop()
        if self._init_task is not None:
            try:
                await self._init_task
            except asyncio.CancelledError:
                pass
        await self._watcher.aclose()

    async def _init(self) -> None:
        await self._refresh_volume()
        if self._stopped:
            return
        self._watcher.start()

    async def _refresh_volume(self) -> None:
        try:
            status = await get_default_sink_volume()
        except (BarwatchError, OSError, ValueError, KeyError) as e:
            log.warning("monitor_refresh_failed", monitor="audio", error=str(e))
            self._report(e)
            return
        if self.on_volume_change is not None:
            self.on_volume_change(status)

    async def _refresh_default_sink(self) -> bool:
        try:
            sink = await get_default_sink()
        except (BarwatchError, OSError) as e:
            log.warning("monitor_refresh_failed", monitor="audio", error=str(e))
            self._report(e)
            return False
        if self.on_default_sink_change is not None:
            self.on_default_sink_change(sink)
        return True

    async def _handle_event(self, event: AudioEvent) -> None:
        if event.action is not AudioEventAction.CHANGE:
            return
        if event.object is AudioObjectType.SINK:
            await self._refresh_volume()
        elif event.object is AudioObjectType.SERVER:
            if await self._refresh_default_sink():
                await self._refresh_volume()

    def _report(self, error: Exception) -> None:
        if self.on_error is not None:
            self.on_error(error)


def create_audio_monitor(**options) -> Callable[[], None]:
    """Start an AudioMonitor and return its stop function.

    Takes the same keyword arguments as AudioMonitor. Must be called from a
    running event loop.
    """
    monitor = AudioMonitor(**options)
    monitor.start()
    return monitor.stop
