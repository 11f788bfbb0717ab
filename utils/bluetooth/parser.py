"""
Streaming parser for bluetoothctl output.

The tool writes to its stdout pipe in arbitrary chunks with no framing, so
the parser keeps a line buffer, strips terminal escapes and turns complete
lines into records the registry understands.
"""

from __future__ import annotations

import re
from typing import Union

from utils.bluetooth.models import (
    ConnectionChanged,
    DeviceAnnouncement,
    DeviceDeleted,
    PropertyChanged,
)

ParsedRecord = Union[DeviceAnnouncement, DeviceDeleted, ConnectionChanged, PropertyChanged]

MAC_PATTERN = r'[0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5}'

# Real escapes, escape-less colour fragments bluetoothctl leaves behind
# when output is split, and readline's prompt ignore markers.
ANSI_PATTERN = re.compile(r'\x1b\[[0-9;?]*[A-Za-z]|\[0;9[0-9]m|\[0m|[\x01\x02]')

DEVICE_LINE_PATTERN = re.compile(
    r'(?:^|\s)(?:\[(?P<tag>NEW|CHG|DEL)\]\s+)?Device\s+(?P<mac>' + MAC_PATTERN + r')'
    r'(?:\s+(?P<rest>.*))?$'
)
PROPERTY_PATTERN = re.compile(r'^(?P<key>[A-Za-z][\w.]*):\s*(?P<value>.*)$')

# "Device <MAC> (public)" opens an `info` block and "Device <MAC> not available"
# is an error reply; neither announces anything
NON_ANNOUNCEMENT_PATTERN = re.compile(r'^(?:\((?:public|random)\)|not available)$', re.IGNORECASE)


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences and carriage returns."""
    return ANSI_PATTERN.sub('', text).replace('\r', '')


def parse_line(line: str) -> ParsedRecord | None:
    """Parse one already-cleaned line, returning None when it is not a device line."""
    match = DEVICE_LINE_PATTERN.search(line.strip())
    if not match:
        return None

    tag = match.group('tag')
    mac = match.group('mac').upper()
    rest = (match.group('rest') or '').strip()

    if tag == 'DEL':
        return DeviceDeleted(mac)

    if tag == 'CHG':
        prop = PROPERTY_PATTERN.match(rest)
        if not prop:
            return None
        key, value = prop.group('key'), prop.group('value').strip()
        if key == 'Connected':
            return ConnectionChanged(mac, value.lower() == 'yes')
        return PropertyChanged(mac, key, value)

    if NON_ANNOUNCEMENT_PATTERN.match(rest):
        return None

    return DeviceAnnouncement(mac, rest)


class OutputParser:
    """Reassembles chunked output into lines and parses each one."""

    def __init__(self) -> None:
        self._buffer = ''

    @property
    def pending(self) -> str:
        """Trailing partial line waiting for its newline."""
        return self._buffer

    def feed(self, data: bytes | str) -> list[ParsedRecord]:
        """
        Consume a chunk of output.

        Args:
            data: Raw bytes or decoded text from the tool's stdout

        Returns:
            Records for every complete line in this chunk that matched
        """
        if isinstance(data, bytes):
            data = data.decode('utf-8', errors='replace')

        self._buffer += data
        records: list[ParsedRecord] = []

        while '\n' in self._buffer:
            line, self._buffer = self._buffer.split('\n', 1)
            record = parse_line(strip_ansi(line))
            if record is not None:
                records.append(record)

        return records

    def flush(self) -> list[ParsedRecord]:
        """Parse whatever partial line is left, e.g. when the process exits."""
        line, self._buffer = self._buffer, ''
        record = parse_line(strip_ansi(line)) if line else None
        return [record] if record is not None else []

    def reset(self) -> None:
        self._buffer = ''
