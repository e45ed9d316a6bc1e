"""NetworkManager integration: nmcli parsing, one-shot queries and a live monitor.

The monitor follows `nmcli monitor` for connect/disconnect events and polls
/proc/net/wireless for signal strength, which is roughly ten times cheaper
than asking nmcli.

See https://networkmanager.dev/docs/api/latest/nmcli.html for the terse
(-t) output format: fields are colon-separated and literal colons inside a
field are escaped as \\:.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import structlog

from barwatch.errors import BarwatchError
from barwatch.poller import Poller
from barwatch.process import run_checked, run_command
from barwatch.watcher import ProcessWatcher

log = structlog.get_logger()

MONITOR_COMMAND = ("nmcli", "monitor")
WIRELESS_PATH = Path("/proc/net/wireless")
SYS_CLASS_NET = Path("/sys/class/net")

# /proc/net/wireless reports link quality on a 0-70 scale
LINK_QUALITY_MAX = 70

WIFI_LIST_FIELDS = "SSID,BSSID,SIGNAL,RATE,FREQ,CHAN,SECURITY,DEVICE,ACTIVE"
ACTIVE_WIFI_FIELDS = "SSID,SIGNAL,RATE,FREQ,CHAN,SECURITY,DEVICE,ACTIVE"


class ConnectionType(Enum):
    WIFI = "wifi"
    ETHERNET = "ethernet"
    OTHER = "other"


class EthernetState(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    UNAVAILABLE = "unavailable"


class ConnectivityState(Enum):
    FULL = "full"
    LIMITED = "limited"
    NONE = "none"


class NetworkEventType(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTIVITY = "connectivity"


@dataclass(frozen=True)
class NetworkEvent:
    """One decoded line of `nmcli monitor` output."""

    type: NetworkEventType
    device: str | None = None
    ssid: str | None = None
    connectivity: ConnectivityState | None = None


@dataclass
class NetworkStatus:
    """Snapshot of the active connection.

    Signal, rate, frequency, channel and security are only known for wifi.
    """

    name: str
    type: ConnectionType
    device: str
    signal: int | None = None  # 0-100%
    rate: str | None = None  # e.g. "130 Mbit/s"
    frequency: str | None = None  # e.g. "2427 MHz"
    channel: int | None = None
    security: str | None = None  # e.g. "WPA2"


@dataclass
class WifiNetwork:
    """A visible access point."""

    ssid: str
    bssid: str
    signal: int
    rate: str | None = None
    frequency: str | None = None
    channel: int | None = None
    security: str | None = None
    active: bool = False


@dataclass
class EthernetDevice:
    """A wired interface and its link state."""

    device: str
    state: EthernetState
    connection: str | None = None
    speed: int | None = None  # Mbit/s, only when connected and known


# --- Line and terse-output parsing ---

_CONNECTED_RE = re.compile(r"^([\w.-]+): connected$")
_DISCONNECTED_RE = re.compile(r"^([\w.-]+): disconnected$")
_USING_RE = re.compile(r"^([\w.-]+): using connection '(.+)'$")
_CONNECTIVITY_RE = re.compile(r"^Connectivity is now '(\w+)'$")

_UNESCAPED_COLON = re.compile(r"(?<!\\):")

_CONNECTION_TYPES = {
    "802-11-wireless": ConnectionType.WIFI,
    "802-3-ethernet": ConnectionType.ETHERNET,
}


def parse_monitor_line(line: str) -> NetworkEvent | None:
    """Parse one `nmcli monitor` line.

    Returns:
        The event, or None for lines that are not connection events
        (e.g. "NetworkManager is running", "wlan0: connecting (prepare)").
    """
    if match := _CONNECTED_RE.match(line):
        return NetworkEvent(type=NetworkEventType.CONNECTED, device=match.group(1))
    if match := _DISCONNECTED_RE.match(line):
        return NetworkEvent(type=NetworkEventType.DISCONNECTED, device=match.group(1))
    if match := _USING_RE.match(line):
        return NetworkEvent(
            type=NetworkEventType.CONNECTING, device=match.group(1), ssid=match.group(2)
        )
    if match := _CONNECTIVITY_RE.match(line):
        try:
            state = ConnectivityState(match.group(1))
        except ValueError:
            return None  # portal/unknown are not tracked
        return NetworkEvent(type=NetworkEventType.CONNECTIVITY, connectivity=state)
    return None


def split_terse(line: str) -> list[str]:
    """Split a terse nmcli row on unescaped colons and unescape each field."""
    return [part.replace("\\:", ":") for part in _UNESCAPED_COLON.split(line)]


def _optional(value: str) -> str | None:
    return value or None


def _optional_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def parse_wifi_list(output: str) -> list[WifiNetwork]:
    """Parse `nmcli -t -f SSID,BSSID,SIGNAL,RATE,FREQ,CHAN,SECURITY,DEVICE,ACTIVE`.

    Rows with fewer than nine fields, or without SSID/BSSID (hidden
    networks), are skipped.
    """
    networks = []
    for line in output.strip().splitlines():
        if not line:
            continue
        parts = split_terse(line)
        if len(parts) < 9:
            continue
        ssid, bssid, signal, rate, freq, chan, security, _device, active = parts[:9]
        if not ssid or not bssid:
            continue
        networks.append(
            WifiNetwork(
                ssid=ssid,
                bssid=bssid,
                signal=_optional_int(signal) or 0,
                rate=_optional(rate),
                frequency=_optional(freq),
                channel=_optional_int(chan),
                security=_optional(security),
                active=active == "yes",
            )
        )
    return networks


def parse_active_wifi(output: str) -> NetworkStatus | None:
    """Parse `nmcli -t -f SSID,SIGNAL,RATE,FREQ,CHAN,SECURITY,DEVICE,ACTIVE dev wifi`.

    Returns:
        Status built from the first row marked active, or None.
    """
    for line in output.strip().splitlines():
        if not line.endswith(":yes"):
            continue
        parts = split_terse(line)
        if len(parts) < 8:
            continue
        ssid, signal, rate, freq, chan, security, device = parts[:7]
        if not ssid or not device:
            continue
        return NetworkStatus(
            name=ssid,
            type=ConnectionType.WIFI,
            device=device,
            signal=_optional_int(signal),
            rate=_optional(rate),
            frequency=_optional(freq),
            channel=_optional_int(chan),
            security=_optional(security),
        )
    return None


def parse_active_connections(output: str) -> list[NetworkStatus]:
    """Parse `nmcli -t -f NAME,TYPE,DEVICE connection show --active`.

    Loopback connections are dropped; unknown types map to OTHER.
    """
    connections = []
    for line in output.strip().splitlines():
        parts = split_terse(line)
        if len(parts) < 3:
            continue
        name, conn_type, device = parts[:3]
        if not name or not conn_type or not device:
            continue
        if conn_type == "loopback":
            continue
        connections.append(
            NetworkStatus(
                name=name,
                type=_CONNECTION_TYPES.get(conn_type, ConnectionType.OTHER),
                device=device,
            )
        )
    return connections


def parse_device_status(output: str) -> list[EthernetDevice]:
    """Parse `nmcli -t -f DEVICE,TYPE,STATE,CONNECTION dev status`, ethernet rows only."""
    devices = []
    for line in output.strip().splitlines():
        parts = split_terse(line)
        if len(parts) < 3:
            continue
        device, dev_type, state = parts[:3]
        connection = parts[3] if len(parts) > 3 else ""
        if dev_type != "ethernet" or not device:
            continue
        if state == "connected":
            eth_state = EthernetState.CONNECTED
        elif state == "unavailable":
            eth_state = EthernetState.UNAVAILABLE
        else:
            eth_state = EthernetState.DISCONNECTED
        devices.append(
            EthernetDevice(device=device, state=eth_state, connection=_optional(connection))
        )
    return devices


def link_quality_to_percent(quality: int) -> int:
    """Convert /proc/net/wireless link quality (0-70) to a percentage."""
    return round(quality / LINK_QUALITY_MAX * 100)


def parse_wireless_signal(text: str, device: str) -> int | None:
    """Extract a device's signal percentage from /proc/net/wireless contents.

    Format: " wlan0: 0000   32.  -78.  -256 ..." where 32 is link quality.
    """
    pattern = re.compile(rf"^\s*{re.escape(device)}:\s+\d+\s+(\d+)\.", re.MULTILINE)
    match = pattern.search(text)
    if not match:
        return None
    return link_quality_to_percent(int(match.group(1)))


# --- Fast-path readers ---


def read_wifi_signal(device: str = "wlan0", path: Path = WIRELESS_PATH) -> int | None:
    """Read wifi signal strength (0-100%) from /proc/net/wireless.

    Returns None when the file or the device's row is missing.
    """
    try:
        text = path.read_text()
    except OSError:
        return None
    return parse_wireless_signal(text, device)


def read_ethernet_speed(device: str, root: Path = SYS_CLASS_NET) -> int | None:
    """Read link speed in Mbit/s from sysfs.

    The kernel reports -1 when there is no link or the speed is unknown;
    that (and anything unreadable) is returned as None, never as 0 or -1.
    """
    try:
        speed = int((root / device / "speed").read_text().strip())
    except (OSError, ValueError):
        return None
    return speed if speed > 0 else None


# --- One-shot queries ---


async def list_wifi_networks() -> list[WifiNetwork]:
    """List visible wifi networks.

    Raises:
        CommandFailed: If nmcli exits non-zero.
    """
    output = await run_checked(["nmcli", "-t", "-f", WIFI_LIST_FIELDS, "dev", "wifi", "list"])
    return parse_wifi_list(output)


async def list_ethernet_devices() -> list[EthernetDevice]:
    """List ethernet devices; connected ones include their link speed.

    Raises:
        CommandFailed: If nmcli exits non-zero.
    """
    output = await run_checked(
        ["nmcli", "-t", "-f", "DEVICE,TYPE,STATE,CONNECTION", "dev", "status"]
    )
    devices = parse_device_status(output)
    for dev in devices:
        if dev.state is EthernetState.CONNECTED:
            dev.speed = read_ethernet_speed(dev.device)
    return devices


async def get_active_connection() -> NetworkStatus | None:
    """Return the active connection, or None when offline.

    Wifi details are tried first since they include signal and security.
    A failing wifi query (no wifi hardware) falls through to the generic
    active-connection list.

    Raises:
        CommandFailed: If the active-connection query exits non-zero.
    """
    wifi = await run_command(["nmcli", "-t", "-f", ACTIVE_WIFI_FIELDS, "dev", "wifi"])
    if wifi.ok and wifi.stdout.strip():
        status = parse_active_wifi(wifi.stdout)
        if status is not None:
            return status

    output = await run_checked(
        ["nmcli", "-t", "-f", "NAME,TYPE,DEVICE", "connection", "show", "--active"]
    )
    connections = parse_active_connections(output)
    return connections[0] if connections else None


# --- Monitor ---


class NetworkMonitor:
    """Push connection, disconnection and signal changes to callbacks.

    On start the active connection is queried once and reported, then
    `nmcli monitor` is followed. A "connected" line triggers a fresh
    active-connection query, since the monitor line carries only the
    device name. Signal is polled from /proc/net/wireless while a device
    is associated.

    Connectivity events are decoded but not delivered to any callback.
    """

    def __init__(
        self,
        on_connect: Callable[[NetworkStatus], None] | None = None,
        on_disconnect: Callable[[], None] | None = None,
        on_signal_change: Callable[[int], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        signal_poll_interval: float = 1.0,
        restart_delay: float = 1.0,
        command: Sequence[str] = MONITOR_COMMAND,
        wireless_path: Path = WIRELESS_PATH,
    ) -> None:
        self.on_connect = on_connect
        self.on_disconnect = on_disconnect
        self.on_signal_change = on_signal_change
        self.on_error = on_error
        self.wireless_path = wireless_path

        self._stopped = False
        self._current_device: str | None = None
        self._init_task: asyncio.Task | None = None
        self._watcher: ProcessWatcher[NetworkEvent] = ProcessWatcher(
            command,
            parse_monitor_line,
            self._handle_event,
            on_error=self._report,
            restart_delay=restart_delay,
            name="nmcli-monitor",
        )
        self._poller = Poller(signal_poll_interval, self._poll_signal, name="wifi-signal")

    @property
    def current_device(self) -> str | None:
        """Device of the current connection, if any."""
        return self._current_device

    @property
    def watcher(self) -> ProcessWatcher[NetworkEvent]:
        return self._watcher

    def start(self) -> None:
        """Begin monitoring in the background. Requires a running loop."""
        if self._stopped or self._init_task is not None:
            return
        self._init_task = asyncio.get_running_loop().create_task(
            self._init(), name="network-monitor-init"
        )

    def stop(self) -> None:
        """Stop the watcher and the signal poller. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._watcher.stop()
        self._poller.stop()

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
        await self._refresh()
        if self._stopped:
            return
        self._watcher.start()
        self._poller.start()

    async def _refresh(self) -> None:
        """Query the active connection and report it through on_connect."""
        try:
            status = await get_active_connection()
        except (BarwatchError, OSError) as e:
            log.warning("monitor_refresh_failed", monitor="network", error=str(e))
            self._report(e)
            return
        if status is None:
            return
        self._current_device = status.device
        if self.on_connect is not None:
            self.on_connect(status)

    async def _handle_event(self, event: NetworkEvent) -> None:
        if event.type is NetworkEventType.CONNECTED and event.device:
            self._current_device = event.device
            await self._refresh()
        elif event.type is NetworkEventType.DISCONNECTED:
            if self._current_device is not None and event.device != self._current_device:
                # e.g. p2p-dev-wlan0 dropping while wlan0 stays associated
                log.debug("network_event_ignored", type=event.type.value, device=event.device)
                return
            self._current_device = None
            if self.on_disconnect is not None:
                self.on_disconnect()
        else:
            log.debug("network_event_ignored", type=event.type.value, device=event.device)

    async def _poll_signal(self) -> None:
        device = self._current_device
        if self._stopped or device is None:
            return
        signal = read_wifi_signal(device, self.wireless_path)
        if signal is not None and self.on_signal_change is not None:
            self.on_signal_change(signal)

    def _report(self, error: Exception) -> None:
        if self.on_error is not None:
            self.on_error(error)


def create_network_monitor(**options) -> Callable[[], None]:
    """Start a NetworkMonitor and return its stop function.

    Takes the same keyword arguments as NetworkMonitor. Must be called from
    a running event loop.
    """
    monitor = NetworkMonitor(**options)
    monitor.start()
    return monitor.stop
