"""
Session device registry.

Holds the devices of the current session keyed by MAC, merges live
announcements with stored records and publishes one event per change.
Devices already stored bypass the name filter entirely: announcement text
for the same device is not stable across sessions, and a device the user has
interacted with must never vanish from the UI because of a filter miss.
"""

from __future__ import annotations

import threading
import time
from types import ModuleType
from typing import Any, Callable, Optional

import config
from utils import database
from utils.bluetooth.events import EventBroadcaster
from utils.bluetooth.filters import DeviceFilter, extract_rssi
from utils.bluetooth.models import (
    Device,
    DeviceLifecycleState,
    RemovalPolicy,
)
from utils.constants import BATTERY_MAX, BATTERY_MIN, DEFAULT_RSSI
from utils.logging import bluetooth_logger as logger

Event = dict[str, Any]


class DeviceRegistry:
    """Source of truth for device state during a session."""

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        store: ModuleType | Any = database,
        device_filter: DeviceFilter | None = None,
        offline_threshold: float | None = None,
        removal_policy: RemovalPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the registry.

        Args:
            broadcaster: Receives one event per state change
            store: Persistence gateway exposing the *_bt_device functions
            device_filter: Name filter for devices not yet stored
            offline_threshold: Seconds after the last sighting a device goes offline
            removal_policy: What remove() does to the stored record
            clock: Time source, epoch seconds
        """
        self.broadcaster = broadcaster
        self.store = store
        self.filter = device_filter or DeviceFilter()
        self.offline_threshold = (
            config.BT_OFFLINE_THRESHOLD if offline_threshold is None else offline_threshold
        )
        self.removal_policy = removal_policy or RemovalPolicy.from_config(config.BT_REMOVE_POLICY)
        self.clock = clock

        self._lock = threading.RLock()
        self._devices: dict[str, Device] = {}
        self._connected_mac: Optional[str] = None
        # RSSI seen for MACs whose name has not been accepted yet
        self._pending_rssi: dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def connected_mac(self) -> Optional[str]:
        with self._lock:
            return self._connected_mac

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def __contains__(self, mac: str) -> bool:
        with self._lock:
            return mac.upper() in self._devices

    def get(self, mac: str) -> Optional[dict]:
        with self._lock:
            device = self._devices.get(mac.upper())
            return self._view(device) if device else None

    def is_online(self, mac: str) -> bool:
        with self._lock:
            device = self._devices.get(mac.upper())
            return device.is_online(self.offline_threshold, self.clock()) if device else False

    def devices(self) -> list[dict]:
        """Snapshot of every session device, is_online computed now."""
        with self._lock:
            now = self.clock()
            return [d.to_dict(self.offline_threshold, now) for d in self._devices.values()]

    def connected_device(self) -> Optional[dict]:
        with self._lock:
            if self._connected_mac is None:
                return None
            device = self._devices.get(self._connected_mac)
            return self._view(device) if device else None

    def paired_macs(self) -> list[str]:
        with self._lock:
            return [d.mac for d in self._devices.values() if d.paired]

    def _view(self, device: Device) -> dict:
        return device.to_dict(self.offline_threshold, self.clock())

    def _publish(self, events: list[Event]) -> None:
        # Always called with the registry lock released
        for event in events:
            self.broadcaster.publish(event)

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def load_persisted(self) -> int:
        """Seed the session with stored paired devices; they stay offline until seen."""
        records = self.store.get_paired_bt_devices()
        loaded = 0
        with self._lock:
            for record in records:
                mac = record['mac_address'].upper()
                if mac in self._devices:
                    continue
                device = Device.from_record(record)
                device.last_seen = None
                self._devices[mac] = device
                loaded += 1
        logger.info(f"Loaded {loaded} paired device(s) from database")
        return loaded

    def observe(self, mac: str, raw_name: str) -> Optional[dict]:
        """
        Handle a `Device <MAC> <name>` announcement.

        Returns:
            The device view if the announcement was kept, None if rejected
        """
        mac = mac.upper()
        now = self.clock()
        events: list[Event] = []

        record = self.store.get_bt_device(mac)
        if record is not None:
            view = self._observe_stored(mac, raw_name, record, now, events)
        else:
            view = self._observe_new(mac, raw_name, now, events)

        self._publish(events)
        return view

    def _observe_stored(self, mac: str, raw_name: str, record: dict,
                        now: float, events: list[Event]) -> dict:
        reading = extract_rssi(raw_name)
        with self._lock:
            device = self._devices.get(mac)
            if reading is not None:
                rssi = reading
            elif device is not None:
                rssi = device.rssi
            else:
                rssi = record['rssi'] if record['rssi'] is not None else DEFAULT_RSSI

            if device is None:
                device = Device.from_record(record)
                device.touch(rssi, now)
                self._devices[mac] = device
                logger.info(f"Found known device {mac} ({device.name})")
                events.append({'type': 'device-found', 'device': self._view(device)})
            else:
                device.touch(rssi, now)
            view = self._view(device)

        self.store.refresh_bt_device(mac, rssi, now)
        return view

    def _observe_new(self, mac: str, raw_name: str, now: float,
                     events: list[Event]) -> Optional[dict]:
        with self._lock:
            cached = self._pending_rssi.get(mac)
        result = self.filter.classify(raw_name, rssi=cached)
        if not result.accepted:
            logger.debug(f"Skipping {mac} {result.name!r}: rejected by {result.rule}")
            if result.rssi is not None:
                with self._lock:
                    self._pending_rssi[mac] = result.rssi
            return None

        with self._lock:
            self._pending_rssi.pop(mac, None)
            device = self._devices.get(mac)
            if device is None:
                device = Device(mac=mac, name=result.name, rssi=result.rssi)
                device.touch(now=now)
                self._devices[mac] = device
                logger.info(f"Found {mac} ({device.name})")
                events.append({'type': 'device-found', 'device': self._view(device)})
            else:
                device.touch(now=now)
            view = self._view(device)

        self.store.insert_bt_device(mac, result.name, result.rssi, now)
        return view

    def update_property(self, mac: str, key: str, value: str) -> Optional[dict]:
        """
        Apply a `[CHG]` property line to a session device.

        An RSSI change for a MAC not in the session is kept and used as the
        initial reading once the device's name is accepted.
        """
        mac = mac.upper()
        events: list[Event] = []
        with self._lock:
            device = self._devices.get(mac)
            if device is None:
                if key == 'RSSI':
                    reading = extract_rssi(f'RSSI: {value}')
                    if reading is not None:
                        self._pending_rssi[mac] = reading
                return None

            now = self.clock()
            if key == 'RSSI':
                reading = extract_rssi(f'RSSI: {value}')
                if reading is None:
                    return None
                device.touch(reading, now)
                rssi = device.rssi
            elif key in ('Paired', 'Trusted'):
                flag = value.lower() == 'yes'
                if key == 'Paired':
                    device.paired = flag
                else:
                    device.trusted = flag
                self._advance(device)
                rssi = None
                events.append({'type': 'device-updated', 'device': self._view(device)})
            else:
                return None
            view = self._view(device)

        if rssi is not None:
            self.store.refresh_bt_device(mac, rssi, now)
        elif key == 'Paired':
            self.store.update_bt_paired(mac, device.paired)
        else:
            self.store.update_bt_trusted(mac, device.trusted)
        self._publish(events)
        return view

    def mark_offline(self, mac: str) -> Optional[dict]:
        """The adapter dropped the device: offline, not connected, no battery."""
        mac = mac.upper()
        events: list[Event] = []
        with self._lock:
            device = self._devices.get(mac)
            if device is None:
                return None
            device.last_seen = None
            device.battery = None
            if device.is_connected:
                device.is_connected = False
                device.state = DeviceLifecycleState.DISCONNECTED
            if self._connected_mac == mac:
                self._connected_mac = None
            view = self._view(device)
            events.append({'type': 'device-updated', 'device': view})

        logger.info(f"Device {mac} went offline")
        self._publish(events)
        return view

    def begin_scan(self) -> int:
        """
        Forget purely discovered devices before a new scan.

        Every accepted device is stored on discovery, so only devices whose
        store write failed (or whose row was deleted) are dropped here.
        """
        with self._lock:
            self._pending_rssi.clear()
            candidates = [
                mac for mac, device in self._devices.items()
                if not device.is_connected and not device.paired and not device.trusted
            ]
        events: list[Event] = []
        for mac in candidates:
            if self.store.get_bt_device(mac) is None:
                with self._lock:
                    if self._devices.pop(mac, None) is not None:
                        events.append({'type': 'device-removed', 'mac': mac})
        if events:
            logger.info(f"Cleared {len(events)} session-only device(s) for new scan")
        self._publish(events)
        return len(events)

    # -------------------------------------------------------------------------
    # Pairing and connection
    # -------------------------------------------------------------------------

    def set_flags(self, mac: str, paired: bool | None = None,
                  trusted: bool | None = None) -> Optional[dict]:
        """Record pairing/trust in the session and the store."""
        mac = mac.upper()
        if paired is not None:
            self.store.update_bt_paired(mac, paired)
        if trusted is not None:
            self.store.update_bt_trusted(mac, trusted)

        with self._lock:
            device = self._devices.get(mac)
            if device is None:
                return None
            if paired is not None:
                device.paired = paired
            if trusted is not None:
                device.trusted = trusted
            self._advance(device)
            return self._view(device)

    def set_connected(self, mac: str, connected: bool) -> Optional[dict]:
        """
        Mark a device connected or disconnected.

        Connecting one device disconnects every other: the adapter drives a
        single audio sink. Devices unknown to both the session and the store
        are ignored.
        """
        mac = mac.upper()
        events: list[Event] = []

        with self._lock:
            device = self._devices.get(mac)
        if device is None:
            record = self.store.get_bt_device(mac)
            if record is None:
                logger.info(f"Ignoring connection change for unknown device {mac}")
                return None
            with self._lock:
                device = self._devices.get(mac)
                if device is None:
                    device = Device.from_record(record)
                    device.touch(now=self.clock())
                    self._devices[mac] = device
                    events.append({'type': 'device-found', 'device': self._view(device)})

        with self._lock:
            if connected:
                for other in self._devices.values():
                    if other.mac != mac and other.is_connected:
                        other.is_connected = False
                        other.battery = None
                        other.state = DeviceLifecycleState.DISCONNECTED
                        events.append({'type': 'device-disconnected', 'device': self._view(other)})
                device.is_connected = True
                device.touch(now=self.clock())
                device.state = DeviceLifecycleState.CONNECTED
                self._connected_mac = mac
                events.append({'type': 'device-connected', 'device': self._view(device)})
            else:
                device.is_connected = False
                device.battery = None
                device.state = DeviceLifecycleState.DISCONNECTED
                if self._connected_mac == mac:
                    self._connected_mac = None
                events.append({'type': 'device-disconnected', 'device': self._view(device)})
            view = self._view(device)

        if connected:
            self.store.set_last_connected_bt_device(mac)
        logger.info(f"Device {mac} {'connected' if connected else 'disconnected'}")
        self._publish(events)
        return view

    def clear_connections(self) -> list[str]:
        """Drop every connection without publishing, e.g. on power-off or process exit."""
        with self._lock:
            cleared = []
            for device in self._devices.values():
                if device.is_connected:
                    device.is_connected = False
                    device.state = DeviceLifecycleState.DISCONNECTED
                    cleared.append(device.mac)
                device.battery = None
            self._connected_mac = None
        return cleared

    def set_battery(self, mac: str, battery: int | None) -> bool:
        """Store a battery reading; True when it changed and was published."""
        mac = mac.upper()
        if battery is not None and not BATTERY_MIN <= battery <= BATTERY_MAX:
            battery = None
        with self._lock:
            device = self._devices.get(mac)
            if device is None or device.battery == battery:
                return False
            device.battery = battery
            event = {
                'type': 'device-battery-updated',
                'device': {'mac': device.mac, 'name': device.name, 'battery': battery},
            }
        self._publish([event])
        return True

    def set_rssi(self, mac: str, rssi: int) -> None:
        with self._lock:
            device = self._devices.get(mac.upper())
            if device is not None:
                device.rssi = rssi

    def remove(self, mac: str) -> bool:
        """
        Remove a device from the session.

        The stored record follows the removal policy: SESSION keeps it with
        paired/trusted cleared (BlueZ unpairs on remove), FORGET deletes it.
        """
        mac = mac.upper()
        with self._lock:
            device = self._devices.pop(mac, None)
            if self._connected_mac == mac:
                self._connected_mac = None
            if device is not None:
                device.state = DeviceLifecycleState.REMOVED

        if self.removal_policy is RemovalPolicy.FORGET:
            self.store.delete_bt_device(mac)
        else:
            self.store.update_bt_paired(mac, False)
            self.store.update_bt_trusted(mac, False)

        logger.info(f"Removed {mac} ({self.removal_policy.value})")
        self._publish([{'type': 'device-removed', 'mac': mac}])
        return device is not None

    @staticmethod
    def _advance(device: Device) -> None:
        if device.is_connected:
            return
        if device.trusted:
            device.state = DeviceLifecycleState.TRUSTED
        elif device.paired:
            device.state = DeviceLifecycleState.PAIRED
