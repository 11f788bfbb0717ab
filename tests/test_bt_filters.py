"""Tests for the announced-name filter."""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.bluetooth.filters import DeviceFilter, FilterRule, extract_rssi

VENDOR_PATTERNS = [r'^Mi\s?(Band|Scale|Fit)', r'^Fitbit', r'^Tile\b', r'^AirTag']


@pytest.fixture
def device_filter():
    return DeviceFilter(vendor_patterns=VENDOR_PATTERNS)


class TestExtractRssi:
    def test_hex_with_decimal(self):
        assert extract_rssi('RSSI: 0xffffffc4 (-60)') == -60

    def test_plain_decimal(self):
        assert extract_rssi('RSSI: -72') == -72

    def test_no_reading(self):
        assert extract_rssi('JBL Flip 6') is None
        assert extract_rssi('') is None
        assert extract_rssi(None) is None


class TestDeviceFilter:
    def test_rule_order(self, device_filter):
        assert device_filter.rule_names == [
            'blank',
            'rssi-fragment',
            'low-energy-marker',
            'beacon-mesh',
            'le-vendor',
            'mac-lookalike',
            'advertisement-field',
        ]

    @pytest.mark.parametrize('name, rule', [
        ('', 'blank'),
        ('   ', 'blank'),
        ('RSSI: 0xffffffc4 (-60)', 'rssi-fragment'),
        ('LE_Band', 'low-energy-marker'),
        ('Keyboard LE', 'low-energy-marker'),
        ('BLE Sensor', 'low-energy-marker'),
        ('Kitchen Beacon', 'beacon-mesh'),
        ('mesh node 3', 'beacon-mesh'),
        ('Mi Band 4', 'le-vendor'),
        ('Fitbit Charge', 'le-vendor'),
        ('AA-BB-CC-DD-EE-FF', 'mac-lookalike'),
        ('aa_bb_cc_dd_ee_ff', 'mac-lookalike'),
        ('ManufacturerData.Key: 0x004c', 'advertisement-field'),
        ('TxPower: 12', 'advertisement-field'),
    ])
    def test_rejections(self, device_filter, name, rule):
        result = device_filter.classify(name)
        assert result.accepted is False
        assert result.rule == rule

    @pytest.mark.parametrize('name', [
        'JBL Flip 6',
        'Sony WH-1000XM4',
        'Bose QC35 (Living room)',
        'Marshall: Emberton',
        'Cleaner',           # contains "le" but not as a word
        'Tiles Speaker',     # vendor pattern needs a word boundary
        'AA-BB:CC-DD-EE-FF', # mixed separators are not a MAC
    ])
    def test_accepts_audio_names(self, device_filter, name):
        result = device_filter.classify(name)
        assert result.accepted is True
        assert result.rule is None
        assert result.name == name

    def test_accepted_default_rssi(self, device_filter):
        assert device_filter.classify('JBL Flip 6').rssi == -70

    def test_accepted_supplied_rssi(self, device_filter):
        assert device_filter.classify('JBL Flip 6', rssi=-48).rssi == -48

    def test_rssi_fragment_keeps_reading(self, device_filter):
        result = device_filter.classify('RSSI: 0xffffffc4 (-60)')
        assert result.accepted is False
        assert result.rssi == -60

    def test_name_is_trimmed(self, device_filter):
        assert device_filter.classify('  JBL Flip 6  ').name == 'JBL Flip 6'

    def test_first_match_wins(self, device_filter):
        # Matches both low-energy-marker and beacon-mesh
        assert device_filter.classify('BLE Beacon').rule == 'low-energy-marker'

    def test_custom_rules(self):
        custom = DeviceFilter(rules=[FilterRule('no-tv', lambda name: 'TV' in name)])
        assert custom.classify('Samsung TV').rule == 'no-tv'
        assert custom.classify('LE_Band').accepted is True

    def test_vendor_patterns_from_config(self, mocker):
        mocker.patch('config.BT_LE_VENDOR_PATTERNS', [r'^Speakerphone'])
        result = DeviceFilter().classify('Speakerphone X')
        assert result.rule == 'le-vendor'
