"""Tests for the bluetooth_devices persistence functions."""

import os
import sqlite3
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

JBL = '00:11:22:33:44:56'
BOSE = 'AA:BB:CC:DD:EE:FF'


@pytest.fixture
def db(tmp_path):
    """Set up a temporary database."""
    import utils.database as db_module
    from utils.database import init_db

    original_db_path = db_module.DB_PATH
    original_db_dir = db_module.DB_DIR
    db_module.DB_PATH = tmp_path / 'test.db'
    db_module.DB_DIR = tmp_path

    if hasattr(db_module._local, 'connection') and db_module._local.connection:
        db_module._local.connection.close()
        db_module._local.connection = None

    init_db()

    yield db_module

    if hasattr(db_module._local, 'connection') and db_module._local.connection:
        db_module._local.connection.close()
        db_module._local.connection = None
    db_module.DB_PATH = original_db_path
    db_module.DB_DIR = original_db_dir


def test_insert_if_absent(db):
    assert db.insert_bt_device(JBL, 'JBL Flip 6', -60, 100.0) is True
    assert db.insert_bt_device(JBL, 'Renamed', -40, 200.0) is False

    device = db.get_bt_device(JBL)
    assert device['name'] == 'JBL Flip 6'
    assert device['rssi'] == -60
    assert device['last_seen'] == 100.0
    assert device['created_at'] == 100.0
    assert device['paired'] is False
    assert device['trusted'] is False


def test_mac_lookup_is_case_insensitive(db):
    db.insert_bt_device(JBL.lower(), 'JBL Flip 6', -60)
    assert db.get_bt_device(JBL)['mac_address'] == JBL
    assert db.get_bt_device(JBL.lower()) is not None


def test_missing_device(db):
    assert db.get_bt_device(BOSE) is None
    assert db.refresh_bt_device(BOSE, -50) is False
    assert db.update_bt_paired(BOSE, True) is False
    assert db.delete_bt_device(BOSE) is False


def test_refresh(db):
    db.insert_bt_device(JBL, 'JBL Flip 6', -60, 100.0)
    assert db.refresh_bt_device(JBL, -45, 150.0) is True
    device = db.get_bt_device(JBL)
    assert device['rssi'] == -45
    assert device['last_seen'] == 150.0


def test_flags_and_paired_listing(db):
    db.insert_bt_device(JBL, 'JBL Flip 6', -60)
    db.insert_bt_device(BOSE, 'Bose QC35', -60)
    db.update_bt_paired(BOSE, True)
    db.update_bt_trusted(BOSE, True)

    paired = db.get_paired_bt_devices()
    assert [d['mac_address'] for d in paired] == [BOSE]
    assert paired[0]['trusted'] is True


def test_single_last_connected(db):
    for mac in (JBL, BOSE):
        db.insert_bt_device(mac, mac, -60)
        db.update_bt_paired(mac, True)

    db.set_last_connected_bt_device(JBL)
    db.set_last_connected_bt_device(BOSE)

    assert db.get_last_connected_bt_device()['mac_address'] == BOSE
    assert db.get_bt_device(JBL)['last_connected'] is False


def test_last_connected_requires_paired(db):
    db.insert_bt_device(JBL, 'JBL Flip 6', -60)
    db.set_last_connected_bt_device(JBL)
    assert db.get_last_connected_bt_device() is None


def test_delete(db):
    db.insert_bt_device(JBL, 'JBL Flip 6', -60)
    assert db.delete_bt_device(JBL) is True
    assert db.get_bt_device(JBL) is None


def test_health(db):
    db.insert_bt_device(JBL, 'JBL Flip 6', -60)
    health = db.get_health()
    assert health['status'] == 'ok'
    assert health['bluetooth_devices'] == 1


def test_health_reports_errors(db, mocker):
    mocker.patch.object(db, 'get_db', side_effect=sqlite3.OperationalError('disk I/O error'))
    health = db.get_health()
    assert health['status'] == 'error'
    assert 'disk I/O error' in health['error']


def test_unique_mac_constraint(db):
    db.insert_bt_device(JBL, 'JBL Flip 6', -60)
    with pytest.raises(sqlite3.IntegrityError):
        with db.get_db() as conn:
            conn.execute(
                'INSERT INTO bluetooth_devices (mac_address, name) VALUES (?, ?)',
                (JBL, 'Duplicate'),
            )
