"""
Bluetooth controller.

Drives bluetoothctl as a long-lived child process and turns its text output
into device and connection state shared with every connected UI client.

Example usage:
    from utils.bluetooth import BluetoothService

    service = BluetoothService()
    service.start()
    service.set_scan(True)
    devices = service.get_devices()
"""

from __future__ import annotations

from .commands import CommandDispatcher, default_timeout
from .events import EventBroadcaster, Subscription
from .filters import DeviceFilter, FilterRule, extract_rssi
from .models import (
    BluetoothCommandError,
    BluetoothError,
    BluetoothNotConnectedError,
    BluetoothUnavailableError,
    ConnectionChanged,
    ConnectivityState,
    Device,
    DeviceAnnouncement,
    DeviceDeleted,
    DeviceLifecycleState,
    PropertyChanged,
    RemovalPolicy,
)
from .parser import OutputParser, parse_line, strip_ansi
from .process import ProcessSupervisor
from .registry import DeviceRegistry
from .service import BluetoothService, parse_battery, parse_info_rssi

__all__ = [
    'BluetoothCommandError',
    'BluetoothError',
    'BluetoothNotConnectedError',
    'BluetoothService',
    'BluetoothUnavailableError',
    'CommandDispatcher',
    'ConnectionChanged',
    'ConnectivityState',
    'Device',
    'DeviceAnnouncement',
    'DeviceDeleted',
    'DeviceFilter',
    'DeviceLifecycleState',
    'DeviceRegistry',
    'EventBroadcaster',
    'FilterRule',
    'OutputParser',
    'ProcessSupervisor',
    'PropertyChanged',
    'RemovalPolicy',
    'Subscription',
    'default_timeout',
    'extract_rssi',
    'parse_battery',
    'parse_info_rssi',
    'parse_line',
    'strip_ansi',
]
