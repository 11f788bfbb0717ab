"""
SQLite database utilities for persistent Bluetooth device storage.
"""

from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import config
from utils.logging import database_logger as logger

# Database file location
DB_DIR = Path(config.DB_PATH).parent if config.DB_PATH else Path(__file__).parent.parent / 'instance'
DB_PATH = Path(config.DB_PATH) if config.DB_PATH else DB_DIR / 'podcastpi.db'

# Thread-local storage for connections
_local = threading.local()


def get_db_path() -> Path:
    """Get the database file path, creating directory if needed."""
    DB_DIR.mkdir(parents=True, exist_ok=True)
    return DB_PATH


def get_connection() -> sqlite3.Connection:
    """Get a thread-local database connection."""
    if getattr(_local, 'connection', None) is None or getattr(_local, 'path', None) != DB_PATH:
        db_path = get_db_path()
        _local.connection = sqlite3.connect(str(db_path), check_same_thread=False)
        _local.connection.row_factory = sqlite3.Row
        _local.path = DB_PATH
    return _local.connection


@contextmanager
def get_db():
    """Context manager for database operations."""
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """Initialize the database schema."""
    db_path = get_db_path()
    logger.info(f"Initializing database at {db_path}")

    with get_db() as conn:
        conn.execute('''
            CREATE TABLE IF NOT EXISTS bluetooth_devices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                mac_address TEXT NOT NULL UNIQUE,
                name TEXT,
                rssi INTEGER,
                last_seen REAL,
                paired INTEGER DEFAULT 0,
                trusted INTEGER DEFAULT 0,
                last_connected INTEGER DEFAULT 0,
                created_at REAL
            )
        ''')

        conn.execute('''
            CREATE INDEX IF NOT EXISTS idx_bluetooth_devices_last_seen
            ON bluetooth_devices(last_seen)
        ''')

    logger.info("Database initialized successfully")


def close_db() -> None:
    """Close the thread-local database connection."""
    if getattr(_local, 'connection', None) is not None:
        _local.connection.close()
        _local.connection = None


def get_health() -> dict[str, Any]:
    """Report whether the database answers a trivial query."""
    try:
        with get_db() as conn:
            count = conn.execute('SELECT COUNT(*) FROM bluetooth_devices').fetchone()[0]
        return {'status': 'ok', 'path': str(DB_PATH), 'bluetooth_devices': count}
    except sqlite3.Error as e:
        logger.error(f"Database health check failed: {e}")
        return {'status': 'error', 'path': str(DB_PATH), 'error': str(e)}


# =============================================================================
# Bluetooth Device Functions
# =============================================================================

def _row_to_device(row: sqlite3.Row) -> dict:
    return {
        'id': row['id'],
        'mac_address': row['mac_address'],
        'name': row['name'],
        'rssi': row['rssi'],
        'last_seen': row['last_seen'],
        'paired': bool(row['paired']),
        'trusted': bool(row['trusted']),
        'last_connected': bool(row['last_connected']),
        'created_at': row['created_at'],
    }


def get_bt_device(mac: str) -> dict | None:
    """Get a stored device by MAC address."""
    with get_db() as conn:
        cursor = conn.execute(
            'SELECT * FROM bluetooth_devices WHERE mac_address = ?',
            (mac.upper(),)
        )
        row = cursor.fetchone()
        return _row_to_device(row) if row else None


def get_paired_bt_devices() -> list[dict]:
    """Get all devices that have been paired."""
    with get_db() as conn:
        cursor = conn.execute(
            'SELECT * FROM bluetooth_devices WHERE paired = 1 ORDER BY last_seen DESC'
        )
        return [_row_to_device(row) for row in cursor]


def insert_bt_device(
    mac: str,
    name: str,
    rssi: int,
    seen_at: float | None = None
) -> bool:
    """
    Insert a device unless it already exists.

    Returns:
        True if a row was created, False if the MAC was already stored
    """
    now = time.time() if seen_at is None else seen_at
    try:
        with get_db() as conn:
            conn.execute('''
                INSERT INTO bluetooth_devices (mac_address, name, rssi, last_seen, created_at)
                VALUES (?, ?, ?, ?, ?)
            ''', (mac.upper(), name, rssi, now, now))
        return True
    except sqlite3.IntegrityError:
        logger.debug(f"Device {mac} already stored")
        return False


def refresh_bt_device(mac: str, rssi: int, seen_at: float | None = None) -> bool:
    """Update a stored device's signal strength and last-seen time."""
    now = time.time() if seen_at is None else seen_at
    with get_db() as conn:
        cursor = conn.execute('''
            UPDATE bluetooth_devices
            SET rssi = ?, last_seen = ?
            WHERE mac_address = ?
        ''', (rssi, now, mac.upper()))
        return cursor.rowcount > 0


def update_bt_paired(mac: str, paired: bool) -> bool:
    """Set a stored device's paired flag."""
    with get_db() as conn:
        cursor = conn.execute(
            'UPDATE bluetooth_devices SET paired = ?, last_seen = ? WHERE mac_address = ?',
            (1 if paired else 0, time.time(), mac.upper())
        )
        return cursor.rowcount > 0


def update_bt_trusted(mac: str, trusted: bool) -> bool:
    """Set a stored device's trusted flag."""
    with get_db() as conn:
        cursor = conn.execute(
            'UPDATE bluetooth_devices SET trusted = ?, last_seen = ? WHERE mac_address = ?',
            (1 if trusted else 0, time.time(), mac.upper())
        )
        return cursor.rowcount > 0


def set_last_connected_bt_device(mac: str) -> None:
    """Mark a device as the one to reconnect to on start-up."""
    with get_db() as conn:
        conn.execute('UPDATE bluetooth_devices SET last_connected = 0 WHERE last_connected = 1')
        conn.execute(
            'UPDATE bluetooth_devices SET last_connected = 1, last_seen = ? WHERE mac_address = ?',
            (time.time(), mac.upper())
        )


def get_last_connected_bt_device() -> dict | None:
    """Get the paired device that was connected most recently."""
    with get_db() as conn:
        cursor = conn.execute(
            'SELECT * FROM bluetooth_devices WHERE last_connected = 1 AND paired = 1 LIMIT 1'
        )
        row = cursor.fetchone()
        return _row_to_device(row) if row else None


def delete_bt_device(mac: str) -> bool:
    """Delete a stored device."""
    with get_db() as conn:
        cursor = conn.execute(
            'DELETE FROM bluetooth_devices WHERE mac_address = ?',
            (mac.upper(),)
        )
        return cursor.rowcount > 0
