"""
Heuristic filtering of announced Bluetooth device names.

bluetoothctl announces every advertiser in range, including low-energy
wearables, beacons and raw advertisement fragments that can never act as an
audio sink. The rules below run in order and the first match rejects the
name. Each rule is a named predicate so it can be tested and tuned on its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from utils.bluetooth.models import Classification
from utils.constants import DEFAULT_RSSI

# "RSSI: 0xffffffc4 (-60)" or "RSSI: -60"
RSSI_HEX_PATTERN = re.compile(r'RSSI:\s*0x[0-9a-fA-F]+\s*\((-?\d+)\)')
RSSI_DEC_PATTERN = re.compile(r'RSSI:\s*(-?\d+)\b')

LE_MARKER_PATTERN = re.compile(r'\b(?:LE|BLE)\b', re.IGNORECASE)
BEACON_MESH_PATTERN = re.compile(r'\b(?:Beacon|Mesh)\b', re.IGNORECASE)
MAC_LOOKALIKE_PATTERN = re.compile(
    r'^[0-9A-Fa-f]{2}([-:_])(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}$'
)
ADVERTISEMENT_FIELD_PATTERN = re.compile(
    r'^(?:ManufacturerData\.(?:Key|Value)|TxPower):', re.IGNORECASE
)


def extract_rssi(text: str | None) -> Optional[int]:
    """Pull a signed signal-strength reading out of an RSSI fragment."""
    if not text:
        return None
    match = RSSI_HEX_PATTERN.search(text) or RSSI_DEC_PATTERN.search(text)
    if not match:
        return None
    return int(match.group(1))


@dataclass(frozen=True)
class FilterRule:
    """A named rejection rule."""
    name: str
    matches: Callable[[str], bool]
    description: str = ''


def _is_blank(name: str) -> bool:
    return not name.strip()


def _is_rssi_fragment(name: str) -> bool:
    return name.strip().upper().startswith('RSSI:')


def _is_low_energy_marker(name: str) -> bool:
    return name.startswith('LE_') or bool(LE_MARKER_PATTERN.search(name))


def _is_beacon_or_mesh(name: str) -> bool:
    return bool(BEACON_MESH_PATTERN.search(name))


def _is_mac_lookalike(name: str) -> bool:
    return bool(MAC_LOOKALIKE_PATTERN.match(name.strip()))


def _is_advertisement_field(name: str) -> bool:
    return bool(ADVERTISEMENT_FIELD_PATTERN.match(name.strip()))


def vendor_rule(patterns: Iterable[str]) -> FilterRule:
    """Build the rule rejecting known low-energy-only products."""
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]

    def _matches(name: str) -> bool:
        return any(p.search(name.strip()) for p in compiled)

    return FilterRule('le-vendor', _matches, 'Known low-energy-only product')


def default_rules(vendor_patterns: Iterable[str]) -> list[FilterRule]:
    """Return the standard rule chain, in evaluation order."""
    return [
        FilterRule('blank', _is_blank, 'Empty name'),
        FilterRule('rssi-fragment', _is_rssi_fragment, 'Raw RSSI advertisement dump'),
        FilterRule('low-energy-marker', _is_low_energy_marker, 'LE_/LE/BLE marker'),
        FilterRule('beacon-mesh', _is_beacon_or_mesh, 'Beacon or mesh node'),
        vendor_rule(vendor_patterns),
        FilterRule('mac-lookalike', _is_mac_lookalike, 'Name is a MAC address'),
        FilterRule('advertisement-field', _is_advertisement_field, 'Leaked advertisement field'),
    ]


class DeviceFilter:
    """Ordered rule chain deciding which announced names become devices."""

    def __init__(self, rules: list[FilterRule] | None = None,
                 vendor_patterns: Iterable[str] | None = None):
        if rules is None:
            if vendor_patterns is None:
                import config
                vendor_patterns = config.BT_LE_VENDOR_PATTERNS
            rules = default_rules(vendor_patterns)
        self.rules = rules

    @property
    def rule_names(self) -> list[str]:
        return [rule.name for rule in self.rules]

    def classify(self, raw_name: str | None, rssi: int | None = None) -> Classification:
        """
        Classify a raw announced name.

        Args:
            raw_name: Everything after the MAC on a `Device` line
            rssi: A reading obtained elsewhere, used when the name is accepted

        Returns:
            Classification; rejected RSSI fragments still carry their reading
        """
        name = (raw_name or '').strip()

        for rule in self.rules:
            if rule.matches(name):
                return Classification(
                    accepted=False,
                    name=name,
                    rssi=extract_rssi(name),
                    rule=rule.name,
                )

        return Classification(
            accepted=True,
            name=name,
            rssi=rssi if rssi is not None else DEFAULT_RSSI,
        )

