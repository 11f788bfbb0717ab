"""Tests for the bluetoothctl output parser."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.bluetooth.models import (
    ConnectionChanged,
    DeviceAnnouncement,
    DeviceDeleted,
    PropertyChanged,
)
from utils.bluetooth.parser import OutputParser, parse_line, strip_ansi


class TestStripAnsi:
    def test_real_escape_sequences(self):
        assert strip_ansi('\x1b[0;94m[bluetooth]\x1b[0m# ') == '[bluetooth]# '

    def test_bare_colour_fragments(self):
        assert strip_ansi('[0;93m[CHG][0m Device') == '[CHG] Device'

    def test_readline_markers_and_carriage_returns(self):
        assert strip_ansi('\x01\x1b[0;94m\x02[bluetooth]\r') == '[bluetooth]'


class TestParseLine:
    def test_announcement(self):
        assert parse_line('Device 00:11:22:33:44:56 JBL Flip 6') == \
            DeviceAnnouncement('00:11:22:33:44:56', 'JBL Flip 6')

    def test_new_tag_and_prompt_prefix(self):
        line = '[bluetooth]# [NEW] Device aa:bb:cc:dd:ee:ff Bose QC35'
        assert parse_line(line) == DeviceAnnouncement('AA:BB:CC:DD:EE:FF', 'Bose QC35')

    def test_name_with_colons_and_parentheses(self):
        record = parse_line('Device 00:11:22:33:44:56 Marshall: Emberton (Kitchen)')
        assert record.raw_name == 'Marshall: Emberton (Kitchen)'

    def test_rssi_fragment_is_still_an_announcement(self):
        record = parse_line('Device 00:11:22:33:44:56 RSSI: 0xffffffc4 (-60)')
        assert record == DeviceAnnouncement('00:11:22:33:44:56', 'RSSI: 0xffffffc4 (-60)')

    def test_deleted(self):
        assert parse_line('[DEL] Device 00:11:22:33:44:56 JBL Flip 6') == \
            DeviceDeleted('00:11:22:33:44:56')

    def test_connection_changed(self):
        assert parse_line('[CHG] Device 00:11:22:33:44:56 Connected: yes') == \
            ConnectionChanged('00:11:22:33:44:56', True)
        assert parse_line('[CHG] Device 00:11:22:33:44:56 Connected: no') == \
            ConnectionChanged('00:11:22:33:44:56', False)

    def test_property_changed(self):
        assert parse_line('[CHG] Device 00:11:22:33:44:56 RSSI: -58') == \
            PropertyChanged('00:11:22:33:44:56', 'RSSI', '-58')

    def test_chg_without_property_is_ignored(self):
        assert parse_line('[CHG] Device 00:11:22:33:44:56 garbage') is None

    def test_info_header_and_errors_are_not_announcements(self):
        assert parse_line('Device 00:11:22:33:44:56 (public)') is None
        assert parse_line('Device 00:11:22:33:44:56 not available') is None

    def test_unrelated_lines(self):
        assert parse_line('Discovery started') is None
        assert parse_line('[CHG] Controller 00:1A:7D:DA:71:13 Discovering: yes') is None
        assert parse_line('') is None


class TestOutputParser:
    def test_reassembles_split_lines(self):
        parser = OutputParser()
        assert parser.feed(b'Device 00:11:22:33:44:56 JBL ') == []
        assert parser.pending == 'Device 00:11:22:33:44:56 JBL '
        records = parser.feed(b'Flip 6\nDevice AA:BB:CC:DD:EE:FF Bose\n')
        assert records == [
            DeviceAnnouncement('00:11:22:33:44:56', 'JBL Flip 6'),
            DeviceAnnouncement('AA:BB:CC:DD:EE:FF', 'Bose'),
        ]
        assert parser.pending == ''

    def test_split_inside_escape_sequence(self):
        parser = OutputParser()
        parser.feed('\x1b[0;9')
        records = parser.feed('3m[CHG]\x1b[0m Device 00:11:22:33:44:56 Connected: yes\r\n')
        assert records == [ConnectionChanged('00:11:22:33:44:56', True)]

    def test_drops_non_matching_lines(self):
        parser = OutputParser()
        records = parser.feed('Agent registered\n[bluetooth]# \nDevice 00:11:22:33:44:56 JBL\n')
        assert len(records) == 1

    def test_flush_parses_trailing_partial_line(self):
        parser = OutputParser()
        parser.feed('Device 00:11:22:33:44:56 JBL Flip 6')
        assert parser.flush() == [DeviceAnnouncement('00:11:22:33:44:56', 'JBL Flip 6')]
        assert parser.pending == ''

    def test_reset(self):
        parser = OutputParser()
        parser.feed('Device 00:11')
        parser.reset()
        assert parser.pending == ''
        assert parser.feed(':22:33:44:56 JBL\n') == []
