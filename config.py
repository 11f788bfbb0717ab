"""Configuration settings for the podcastpi server."""

from __future__ import annotations

import logging
import os
import sys

# Application version
VERSION = "1.0.0"


def _get_env(key: str, default: str) -> str:
    """Get environment variable with default."""
    return os.environ.get(f'PODCASTPI_{key}', default)


def _get_env_int(key: str, default: int) -> int:
    """Get environment variable as integer with default."""
    try:
        return int(os.environ.get(f'PODCASTPI_{key}', str(default)))
    except ValueError:
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get environment variable as float with default."""
    try:
        return float(os.environ.get(f'PODCASTPI_{key}', str(default)))
    except ValueError:
        return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get environment variable as boolean with default."""
    val = os.environ.get(f'PODCASTPI_{key}', '').lower()
    if val in ('true', '1', 'yes', 'on'):
        return True
    if val in ('false', '0', 'no', 'off'):
        return False
    return default


def _get_env_list(key: str, default: list[str]) -> list[str]:
    """Get comma-separated environment variable as a list with default."""
    val = os.environ.get(f'PODCASTPI_{key}')
    if val is None:
        return list(default)
    return [item.strip() for item in val.split(',') if item.strip()]


# Logging configuration
_log_level_str = _get_env('LOG_LEVEL', 'INFO').upper()
LOG_LEVEL = getattr(logging, _log_level_str, logging.INFO)
LOG_FORMAT = _get_env('LOG_FORMAT', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# Server settings
HOST = _get_env('HOST', '0.0.0.0')
PORT = _get_env_int('PORT', 3000)
DEBUG = _get_env_bool('DEBUG', False)

# Database
DB_PATH = _get_env('DB_PATH', '')

# Bluetooth control tool
BT_TOOL = _get_env('BT_TOOL', 'bluetoothctl')
BT_AUTO_START = _get_env_bool('BT_AUTO_START', True)

# Bluetooth command timeouts (seconds)
BT_COMMAND_TIMEOUT = _get_env_float('BT_COMMAND_TIMEOUT', 5.0)
BT_PAIR_TIMEOUT = _get_env_float('BT_PAIR_TIMEOUT', 10.0)
BT_TRUST_TIMEOUT = _get_env_float('BT_TRUST_TIMEOUT', 5.0)
BT_SCAN_TIMEOUT = _get_env_float('BT_SCAN_TIMEOUT', 2.0)
BT_INFO_TIMEOUT = _get_env_float('BT_INFO_TIMEOUT', 2.0)
BT_COMMAND_QUEUE_DELAY = _get_env_float('BT_COMMAND_QUEUE_DELAY', 0.1)

# Bluetooth device tracking
BT_OFFLINE_THRESHOLD = _get_env_float('BT_OFFLINE_THRESHOLD', 30.0)
BT_BATTERY_POLL_INTERVAL = _get_env_float('BT_BATTERY_POLL_INTERVAL', 60.0)
BT_AUTO_RECONNECT = _get_env_bool('BT_AUTO_RECONNECT', True)
BT_AUTO_RECONNECT_DELAY = _get_env_float('BT_AUTO_RECONNECT_DELAY', 2.0)

# What "remove" does to the stored record: 'session' keeps it, 'forget' deletes it
BT_REMOVE_POLICY = _get_env('BT_REMOVE_POLICY', 'session').lower()

# Names of low-energy-only products that are never audio sinks
BT_LE_VENDOR_PATTERNS = _get_env_list('BT_LE_VENDOR_PATTERNS', [
    r'^Mi\s?(Band|Scale|Fit)',
    r'^Fitbit',
    r'^Tile\b',
    r'^AirTag',
    r'^Galaxy\s?Fit',
    r'^Amazfit',
    r'^WHOOP',
    r'^Oura',
])


def configure_logging() -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format=LOG_FORMAT,
        stream=sys.stderr
    )
    # Keep the development server quiet unless we are debugging
    logging.getLogger('werkzeug').setLevel(LOG_LEVEL)
    logging.getLogger('engineio').setLevel(logging.WARNING)
    logging.getLogger('socketio').setLevel(logging.WARNING)
