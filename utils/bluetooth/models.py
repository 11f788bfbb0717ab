"""
Data models for the Bluetooth controller.

Covers the per-device view kept for the current session, the process-level
connectivity state, and the exceptions raised across the controller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from utils.constants import DEFAULT_RSSI


# =============================================================================
# Exceptions
# =============================================================================

class BluetoothError(RuntimeError):
    """Base class for Bluetooth controller failures."""
    pass


class BluetoothNotConnectedError(BluetoothError):
    """Raised when a command is issued while the control tool is not running."""

    def __init__(self, message: str = 'bluetoothctl not connected'):
        super().__init__(message)


class BluetoothUnavailableError(BluetoothError):
    """Raised when the control tool cannot be spawned."""
    pass


class BluetoothCommandError(BluetoothError):
    """Raised when a queued command is rejected before its window closes."""

    def __init__(self, message: str, command: str | None = None):
        super().__init__(message)
        self.command = command


# =============================================================================
# State machines
# =============================================================================

class ConnectivityState(Enum):
    """Process-level state of the Bluetooth controller.

    IDLE, SCANNING and POWERED_OFF are the "ready" variants: the tool is
    running and accepting commands.
    """
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    IDLE = "idle"
    SCANNING = "scanning"
    POWERED_OFF = "powered_off"
    DISCONNECTED = "disconnected"

    @property
    def is_ready(self) -> bool:
        return self in (ConnectivityState.IDLE, ConnectivityState.SCANNING,
                        ConnectivityState.POWERED_OFF)

    @property
    def is_scanning(self) -> bool:
        return self is ConnectivityState.SCANNING

    @property
    def is_powered(self) -> bool:
        return self in (ConnectivityState.IDLE, ConnectivityState.SCANNING)


class DeviceLifecycleState(Enum):
    """Advisory per-device progress through discovery and connection."""
    DISCOVERED = "discovered"
    PAIRED = "paired"
    TRUSTED = "trusted"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    REMOVED = "removed"


class RemovalPolicy(Enum):
    """What removing a device does to its stored record."""
    SESSION = "session"   # Keep the record, clear paired/trusted
    FORGET = "forget"     # Delete the record

    @classmethod
    def from_config(cls, value: str) -> 'RemovalPolicy':
        try:
            return cls(value.lower())
        except ValueError:
            return cls.SESSION


# =============================================================================
# Devices
# =============================================================================

@dataclass
class Device:
    """A Bluetooth device as seen during the current session."""
    mac: str
    name: str
    rssi: int = DEFAULT_RSSI
    paired: bool = False
    trusted: bool = False
    last_seen: Optional[float] = None     # Epoch seconds, None when never seen this session
    is_connected: bool = False            # Session only
    battery: Optional[int] = None         # Session only, set while connected
    state: DeviceLifecycleState = DeviceLifecycleState.DISCOVERED

    def is_online(self, threshold: float, now: float | None = None) -> bool:
        """Check whether the device was seen within the offline threshold."""
        if self.last_seen is None:
            return False
        if now is None:
            now = time.time()
        return now - self.last_seen < threshold

    def touch(self, rssi: int | None = None, now: float | None = None) -> None:
        """Record a sighting, optionally with a fresh signal reading."""
        self.last_seen = time.time() if now is None else now
        if rssi is not None:
            self.rssi = rssi

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> 'Device':
        """Build a session view from a stored bluetooth_devices row."""
        paired = bool(record.get('paired'))
        trusted = bool(record.get('trusted'))
        if trusted:
            state = DeviceLifecycleState.TRUSTED
        elif paired:
            state = DeviceLifecycleState.PAIRED
        else:
            state = DeviceLifecycleState.DISCOVERED
        rssi = record.get('rssi')
        return cls(
            mac=record['mac_address'],
            name=record.get('name') or record['mac_address'],
            rssi=rssi if rssi is not None else DEFAULT_RSSI,
            paired=paired,
            trusted=trusted,
            last_seen=record.get('last_seen'),
            state=state,
        )

    def to_dict(self, threshold: float, now: float | None = None) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'mac': self.mac,
            'name': self.name,
            'rssi': self.rssi,
            'paired': self.paired,
            'trusted': self.trusted,
            'is_connected': self.is_connected,
            'is_online': self.is_online(threshold, now),
            'battery': self.battery,
            'last_seen': self.last_seen,
            'state': self.state.value,
        }


# =============================================================================
# Parser records
# =============================================================================

@dataclass(frozen=True)
class DeviceAnnouncement:
    """A `Device <MAC> <name>` line from the tool."""
    mac: str
    raw_name: str


@dataclass(frozen=True)
class DeviceDeleted:
    """A `[DEL] Device <MAC>` line: the adapter dropped the device."""
    mac: str


@dataclass(frozen=True)
class ConnectionChanged:
    """A `[CHG] Device <MAC> Connected: yes|no` line."""
    mac: str
    connected: bool


@dataclass(frozen=True)
class PropertyChanged:
    """Any other `[CHG] Device <MAC> Key: value` line."""
    mac: str
    key: str
    value: str


@dataclass
class Classification:
    """Outcome of running a raw announced name through the device filter."""
    accepted: bool
    name: str
    rssi: Optional[int] = None
    rule: Optional[str] = None    # Name of the rule that rejected the name
