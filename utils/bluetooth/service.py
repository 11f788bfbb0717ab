"""
Bluetooth controller service.

Composes the process supervisor, command dispatcher, output parser, device
registry and event broadcaster into the one object the HTTP and WebSocket
layers talk to. One instance is built per application.
"""

from __future__ import annotations

import codecs
import re
import threading
import time
from typing import Any, Callable, Optional

import config
from utils import database
from utils.bluetooth.commands import CommandDispatcher
from utils.bluetooth.events import EventBroadcaster, Subscription
from utils.bluetooth.models import (
    BluetoothError,
    BluetoothNotConnectedError,
    ConnectionChanged,
    ConnectivityState,
    DeviceAnnouncement,
    DeviceDeleted,
    PropertyChanged,
)
from utils.bluetooth.parser import OutputParser, ParsedRecord, strip_ansi
from utils.bluetooth.process import ProcessSupervisor
from utils.bluetooth.registry import DeviceRegistry
from utils.constants import BT_PROMPT, BT_STARTUP_SETTLE, DEFAULT_RSSI
from utils.logging import bluetooth_logger as logger

POWERED_PATTERN = re.compile(r'Powered:\s*(yes|no)', re.IGNORECASE)
CONNECTED_PATTERN = re.compile(r'Connected:\s*yes', re.IGNORECASE)
PAIRED_PATTERN = re.compile(r'Paired:\s*yes', re.IGNORECASE)
TRUSTED_PATTERN = re.compile(r'Trusted:\s*yes', re.IGNORECASE)
INFO_RSSI_PATTERN = re.compile(r'RSSI:\s*(?:0x[0-9a-fA-F]+\s*\()?(-?\d+)')
BATTERY_PATTERN = re.compile(r'Battery Percentage:\s*0x[0-9a-fA-F]+\s*\((\d+)\)', re.IGNORECASE)
CONNECT_OK_PATTERN = re.compile(r'Connection successful|Already connected', re.IGNORECASE)
CONNECT_FAILED_PATTERN = re.compile(r'Failed to connect', re.IGNORECASE)


def parse_battery(output: str) -> Optional[int]:
    """Battery is reported as `Battery Percentage: 0x5a (90)`."""
    match = BATTERY_PATTERN.search(output)
    if not match:
        return None
    battery = int(match.group(1))
    return battery if 0 <= battery <= 100 else None


def parse_info_rssi(output: str) -> int:
    match = INFO_RSSI_PATTERN.search(output)
    return int(match.group(1)) if match else DEFAULT_RSSI


class BluetoothService:
    """The Bluetooth controller."""

    def __init__(
        self,
        supervisor: ProcessSupervisor | None = None,
        broadcaster: EventBroadcaster | None = None,
        registry: DeviceRegistry | None = None,
        store: Any = database,
        auto_reconnect: bool | None = None,
        battery_poll_interval: float | None = None,
        background: Callable[[Callable[[], None]], None] | None = None,
    ):
        """
        Initialize the service.

        Args:
            supervisor: Process supervisor; its callbacks are rebound here
            broadcaster: Event fan-out shared with the real-time layer
            registry: Session device registry
            store: Persistence gateway
            auto_reconnect: Reconnect to the last device after start-up
            battery_poll_interval: Seconds between battery polls while connected
            background: Runs follow-up work off the reader thread
        """
        self.broadcaster = broadcaster or EventBroadcaster()
        self.store = store
        self.registry = registry or DeviceRegistry(self.broadcaster, store=store)
        self.supervisor = supervisor or ProcessSupervisor()
        self.supervisor.on_output = self._handle_output
        self.supervisor.on_exit = self._handle_exit
        self.dispatcher = CommandDispatcher(self.supervisor.write, lambda: self.supervisor.is_running)
        self.parser = OutputParser()
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')

        self.auto_reconnect = config.BT_AUTO_RECONNECT if auto_reconnect is None else auto_reconnect
        self.battery_poll_interval = (
            config.BT_BATTERY_POLL_INTERVAL if battery_poll_interval is None else battery_poll_interval
        )
        self._background = background or self._spawn

        self._lock = threading.RLock()
        self._state = ConnectivityState.UNINITIALIZED
        self._battery_stop: Optional[threading.Event] = None
        self.started_at = time.time()

    # -------------------------------------------------------------------------
    # Connectivity state
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectivityState:
        with self._lock:
            return self._state

    def _transition(self, new_state: ConnectivityState) -> ConnectivityState:
        with self._lock:
            old_state = self._state
            self._state = new_state
        if old_state is not new_state:
            logger.info(f"Bluetooth state {old_state.value} -> {new_state.value}")
        return old_state

    def _require_ready(self) -> None:
        if not self.state.is_ready:
            raise BluetoothNotConnectedError()

    @staticmethod
    def _spawn(target: Callable[[], None]) -> None:
        def run() -> None:
            try:
                target()
            except Exception as e:
                logger.exception(f"Bluetooth background task failed: {e}")

        threading.Thread(target=run, daemon=True).start()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, refresh: bool = True) -> None:
        """
        Spawn bluetoothctl, replacing any running instance.

        Raises:
            BluetoothUnavailableError: If the tool cannot be spawned; the
                controller is left DISCONNECTED and the server keeps serving
        """
        self._transition(ConnectivityState.INITIALIZING)
        if self.supervisor.is_running:
            self.dispatcher.reject_pending('bluetoothctl restarted')
        self.parser.reset()
        self._decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
        try:
            self.supervisor.start()
        except BluetoothError:
            self._transition(ConnectivityState.DISCONNECTED)
            self.broadcaster.publish(self.system_status())
            raise

        self._transition(ConnectivityState.IDLE)
        logger.info("bluetoothctl initialized")
        self.broadcaster.publish(self.system_status())

        if refresh:
            self._background(self._post_start)

    def stop(self) -> None:
        """Terminate bluetoothctl; clients see bluetooth_connected=false."""
        self._stop_battery_polling()
        self.supervisor.stop()

    def restart(self) -> None:
        """Replace the running process; the old one's exit is not reported."""
        self._stop_battery_polling()
        self.registry.clear_connections()
        self.start()

    def shutdown(self) -> None:
        self.stop()
        self.dispatcher.shutdown()

    def _post_start(self) -> None:
        try:
            time.sleep(BT_STARTUP_SETTLE)
            self.registry.load_persisted()
            self.refresh_state()
            self.broadcaster.publish(self.system_status())
            devices = self.registry.devices()
            if devices:
                self.broadcaster.publish({'type': 'devices-list', 'devices': devices})
            logger.info("Initial state broadcast complete")
            if self.auto_reconnect:
                self.attempt_auto_reconnect()
        except BluetoothError as e:
            logger.warning(f"Start-up refresh aborted: {e}")

    def _handle_exit(self, returncode: int | None) -> None:
        self.dispatcher.reject_pending(f'bluetoothctl exited with code {returncode}')
        self._stop_battery_polling()
        self.registry.clear_connections()
        for record in self.parser.flush():
            self._apply(record)

        old_state = self._transition(ConnectivityState.DISCONNECTED)
        if old_state is not ConnectivityState.DISCONNECTED:
            self.broadcaster.publish(self.system_status())

    # -------------------------------------------------------------------------
    # Output handling (reader thread)
    # -------------------------------------------------------------------------

    def _handle_output(self, data: bytes) -> None:
        # Multi-byte names can be split across reads
        text = self._decoder.decode(data)
        if not text:
            return
        self.dispatcher.capture(text)

        trimmed = strip_ansi(text).strip()
        if trimmed and trimmed != BT_PROMPT:
            logger.debug(f"[bluetoothctl] {trimmed[:200]}")

        self.broadcaster.publish({'type': 'output', 'data': text})

        for record in self.parser.feed(text):
            self._apply(record)

        if CONNECT_FAILED_PATTERN.search(text):
            self._handle_connect_failure()

    def _apply(self, record: ParsedRecord) -> None:
        if isinstance(record, DeviceAnnouncement):
            self.registry.observe(record.mac, record.raw_name)
        elif isinstance(record, DeviceDeleted):
            if self.registry.mark_offline(record.mac) and self.registry.connected_mac is None:
                self._stop_battery_polling()
        elif isinstance(record, ConnectionChanged):
            self._apply_connection_change(record)
        elif isinstance(record, PropertyChanged):
            self.registry.update_property(record.mac, record.key, record.value)

    def _apply_connection_change(self, change: ConnectionChanged) -> None:
        device = self.registry.set_connected(change.mac, change.connected)
        if device is None:
            return

        if change.connected:
            self._background(lambda: self.fetch_battery(change.mac))
            self._start_battery_polling()
            if self.state.is_scanning:
                self._background(self._auto_stop_scan)
        elif self.registry.connected_mac is None:
            self._stop_battery_polling()

    def _handle_connect_failure(self) -> None:
        mac = self.registry.connected_mac
        if mac is None:
            return
        logger.info(f"Connection to {mac} failed")
        self.registry.set_connected(mac, False)
        self._stop_battery_polling()

    def _auto_stop_scan(self) -> None:
        logger.info("Stopping scan after device connected")
        try:
            self.set_scan(False)
        except BluetoothError as e:
            logger.error(f"Failed to auto-stop scan: {e}")

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def send_command(self, command: str, timeout: float | None = None) -> str:
        """Queue a command and wait for its response window to close."""
        self._require_ready()
        return self.dispatcher.send(command, timeout)

    def refresh_state(self) -> None:
        """Query adapter power and the connection state of paired devices."""
        logger.info("Refreshing Bluetooth state")
        output = self.send_command('show', config.BT_INFO_TIMEOUT)
        powered = POWERED_PATTERN.search(output)
        if powered:
            if powered.group(1).lower() == 'yes':
                if self.state is ConnectivityState.POWERED_OFF:
                    self._transition(ConnectivityState.IDLE)
            else:
                self._transition(ConnectivityState.POWERED_OFF)

        for mac in self.registry.paired_macs():
            try:
                info = self.send_command(f'info {mac}')
            except BluetoothError as e:
                logger.info(f"Could not get info for {mac}: {e}")
                continue
            self.registry.set_flags(
                mac,
                paired=True if PAIRED_PATTERN.search(info) else None,
                trusted=True if TRUSTED_PATTERN.search(info) else None,
            )
            if CONNECTED_PATTERN.search(info):
                if self.registry.connected_mac != mac:
                    self.registry.set_connected(mac, True)
                self.registry.set_battery(mac, parse_battery(info))

        if self.registry.connected_mac:
            self._start_battery_polling()

    def attempt_auto_reconnect(self) -> bool:
        """Reconnect to the most recently connected paired device."""
        if self.registry.connected_mac:
            logger.info("Already connected, skipping auto-reconnect")
            return False

        last = self.store.get_last_connected_bt_device()
        if not last:
            logger.info("No last connected device, skipping auto-reconnect")
            return False

        device = {'mac': last['mac_address'], 'name': last['name']}
        logger.info(f"Attempting auto-reconnect to {device['name']} ({device['mac']})")
        self.broadcaster.publish({'type': 'auto-reconnect-started', 'device': device})

        try:
            time.sleep(config.BT_AUTO_RECONNECT_DELAY)
            result = self.connect(device['mac'], full_sequence=False)
        except BluetoothError as e:
            logger.error(f"Auto-reconnect error: {e}")
            self.broadcaster.publish({
                'type': 'auto-reconnect-failed', 'device': device, 'error': str(e),
            })
            return False

        if CONNECT_OK_PATTERN.search(result['output']):
            logger.info(f"Auto-reconnect successful: {device['name']}")
            self.broadcaster.publish({'type': 'auto-reconnect-success', 'device': device})
            return True

        logger.info(f"Auto-reconnect failed: {device['name']}")
        self.broadcaster.publish({
            'type': 'auto-reconnect-failed', 'device': device, 'error': 'Connection failed',
        })
        return False

    def set_power(self, state: bool) -> dict:
        command = f"power {'on' if state else 'off'}"
        output = self.send_command(command)

        if state:
            if self.state is ConnectivityState.POWERED_OFF:
                self._transition(ConnectivityState.IDLE)
        else:
            self._transition(ConnectivityState.POWERED_OFF)
            self._stop_battery_polling()
            self.registry.clear_connections()

        powered = self.state.is_powered
        self.broadcaster.publish({
            'type': 'bluetooth-power-changed',
            'powered': powered,
            'is_scanning': self.state.is_scanning,
        })
        return {'command': command, 'output': output, 'powered': powered}

    def set_scan(self, state: bool) -> dict:
        self._require_ready()
        if state:
            if self.state is ConnectivityState.POWERED_OFF:
                raise BluetoothError('Bluetooth is powered off')
            self.registry.begin_scan()
            self._transition(ConnectivityState.SCANNING)
            self.broadcaster.publish({'type': 'scan-started'})
        else:
            if self.state is ConnectivityState.SCANNING:
                self._transition(ConnectivityState.IDLE)
            self.broadcaster.publish({'type': 'scan-stopped'})

        command = f"scan {'bredr' if state else 'off'}"
        try:
            output = self.send_command(command)
        except BluetoothError:
            if state and self.state is ConnectivityState.SCANNING:
                self._transition(ConnectivityState.IDLE)
                self.broadcaster.publish({'type': 'scan-stopped'})
            raise
        return {'command': command, 'output': output, 'is_scanning': self.state.is_scanning}

    def pair(self, mac: str) -> dict:
        command = f'pair {mac}'
        output = self.send_command(command)
        self.registry.set_flags(mac, paired=True)
        return {'command': command, 'output': output}

    def trust(self, mac: str) -> dict:
        command = f'trust {mac}'
        output = self.send_command(command)
        self.registry.set_flags(mac, trusted=True)
        return {'command': command, 'output': output}

    def connect(self, mac: str, full_sequence: bool = True) -> dict:
        """
        Connect to a device, by default pairing and trusting it first.

        A failed pair or trust step is logged and the sequence carries on:
        the device is often already paired.
        """
        sequence: dict[str, Optional[str]] = {'pair': None, 'trust': None, 'connect': None}

        if full_sequence:
            logger.info(f"Starting full connection sequence for {mac}")
            try:
                sequence['pair'] = self.pair(mac)['output']
            except BluetoothError as e:
                logger.info(f"Pair failed (may already be paired): {e}")
            try:
                sequence['trust'] = self.trust(mac)['output']
            except BluetoothError as e:
                logger.info(f"Trust failed: {e}")

        command = f'connect {mac}'
        output = self.send_command(command, config.BT_PAIR_TIMEOUT)
        sequence['connect'] = output

        result: dict[str, Any] = {
            'command': command,
            'output': output,
            'device': self.registry.get(mac),
        }
        if full_sequence:
            result['sequence'] = sequence
        return result

    def disconnect(self, mac: str) -> dict:
        command = f'disconnect {mac}'
        output = self.send_command(command)
        return {'command': command, 'output': output}

    def remove(self, mac: str) -> dict:
        command = f'remove {mac}'
        output = self.send_command(command)
        was_connected = self.registry.connected_mac == mac
        self.registry.remove(mac)
        if was_connected:
            self._stop_battery_polling()
        return {'command': command, 'output': output}

    def info(self, mac: str) -> dict:
        command = f'info {mac}'
        output = self.send_command(command)
        rssi = parse_info_rssi(output)
        battery = parse_battery(output)

        self.registry.set_rssi(mac, rssi)
        device = self.registry.get(mac)
        if device and device['is_connected']:
            self.registry.set_battery(mac, battery)
            device = self.registry.get(mac)

        return {
            'command': command,
            'output': output,
            'device': device or {
                'mac': mac, 'name': 'Unknown', 'rssi': rssi,
                'is_connected': False, 'battery': battery,
            },
        }

    def battery(self, mac: str) -> dict:
        output = self.send_command(f'info {mac}')
        battery = parse_battery(output)
        device = self.registry.get(mac)
        if device and device['is_connected']:
            self.registry.set_battery(mac, battery)
        return {'mac': mac, 'battery': battery, 'supported': battery is not None}

    def raw_command(self, command: str) -> dict:
        output = self.send_command(command)
        return {'command': command, 'output': output}

    # -------------------------------------------------------------------------
    # Battery polling
    # -------------------------------------------------------------------------

    def fetch_battery(self, mac: str) -> None:
        try:
            output = self.send_command(f'info {mac}', config.BT_INFO_TIMEOUT)
        except BluetoothError as e:
            logger.error(f"Failed to fetch battery for {mac}: {e}")
            return
        battery = parse_battery(output)
        if self.registry.set_battery(mac, battery):
            logger.info(f"Device {mac} battery: {battery if battery is not None else 'n/a'}")

    def _start_battery_polling(self) -> None:
        with self._lock:
            if self._battery_stop is not None or self.battery_poll_interval <= 0:
                return
            stop = threading.Event()
            self._battery_stop = stop

        def poll() -> None:
            while not stop.wait(self.battery_poll_interval):
                mac = self.registry.connected_mac
                if mac is None:
                    break
                self.fetch_battery(mac)
            with self._lock:
                if self._battery_stop is stop:
                    self._battery_stop = None

        logger.info("Starting battery polling")
        self._background(poll)

    def _stop_battery_polling(self) -> None:
        with self._lock:
            stop, self._battery_stop = self._battery_stop, None
        if stop is not None:
            logger.info("Stopping battery polling")
            stop.set()

    # -------------------------------------------------------------------------
    # Status and real-time subscribers
    # -------------------------------------------------------------------------

    def get_devices(self) -> list[dict]:
        return self.registry.devices()

    def system_status(self) -> dict:
        state = self.state
        return {
            'type': 'system-status',
            'state': state.value,
            'bluetooth_connected': state.is_ready,
            'bluetooth_powered': state.is_powered,
            'devices_count': len(self.registry),
            'connected_device': self.registry.connected_device(),
            'is_scanning': state.is_scanning,
        }

    def snapshot(self) -> list[dict]:
        """Replay for a new subscriber: status, then the device list if any."""
        messages = [self.system_status()]
        devices = self.registry.devices()
        if devices:
            messages.append({'type': 'devices-list', 'devices': devices})
        return messages

    def subscribe(self) -> Subscription:
        return self.broadcaster.subscribe(self.snapshot)

    def unsubscribe(self, sub: Subscription) -> None:
        self.broadcaster.unsubscribe(sub)

    def get_status(self) -> dict:
        state = self.state
        return {
            'is_connected': self.registry.connected_mac is not None,
            'is_scanning': state.is_scanning,
            'bluetooth_powered': state.is_powered,
            'state': state.value,
            'device': self.registry.connected_device(),
        }

    def get_health(self) -> dict:
        state = self.state
        return {
            'status': 'ok' if state.is_ready else 'error',
            'bluetooth_connected': state.is_ready,
            'bluetooth_powered': state.is_powered,
            'devices_count': len(self.registry),
            'is_scanning': state.is_scanning,
            'pending_commands': self.dispatcher.pending_count(),
            'subscribers': self.broadcaster.subscriber_count,
        }
