"""Input validation utilities for API endpoints."""

from __future__ import annotations

import re
from typing import Any

MAX_COMMAND_LENGTH = 256


def validate_mac_address(mac: Any) -> str:
    """Validate and return MAC address."""
    if not mac or not isinstance(mac, str):
        raise ValueError("MAC address is required")
    mac = mac.upper().strip()
    if not re.match(r'^([0-9A-F]{2}:){5}[0-9A-F]{2}$', mac):
        raise ValueError(f"Invalid MAC address format: {mac}")
    return mac


def validate_state(state: Any, name: str = 'state') -> bool:
    """Validate an on/off flag; accepts JSON booleans and their usual spellings."""
    if isinstance(state, bool):
        return state
    if isinstance(state, str):
        value = state.strip().lower()
        if value in ('true', 'on', '1', 'yes'):
            return True
        if value in ('false', 'off', '0', 'no'):
            return False
    if isinstance(state, int) and state in (0, 1):
        return bool(state)
    raise ValueError(f"Invalid {name}: {state!r}")


def validate_command(command: Any) -> str:
    """Validate a raw bluetoothctl command: one non-empty line."""
    if not command or not isinstance(command, str):
        raise ValueError("Command is required")
    command = command.strip()
    if not command:
        raise ValueError("Command is required")
    if '\n' in command or '\r' in command:
        raise ValueError("Command must be a single line")
    if len(command) > MAX_COMMAND_LENGTH:
        raise ValueError(f"Command too long (max {MAX_COMMAND_LENGTH} characters)")
    return command
