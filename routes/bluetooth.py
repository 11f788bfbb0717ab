"""Bluetooth controller routes."""

from __future__ import annotations

import time
from typing import Any, Callable

from flask import Blueprint, Response, current_app, jsonify, request

from utils.bluetooth import BluetoothError, BluetoothService, BluetoothUnavailableError
from utils.constants import SSE_KEEPALIVE_INTERVAL, SSE_QUEUE_TIMEOUT
from utils.logging import bluetooth_logger as logger
from utils.sse import format_sse
from utils.validation import validate_command, validate_mac_address, validate_state

bluetooth_bp = Blueprint('bluetooth', __name__, url_prefix='/api')


def get_service() -> BluetoothService:
    return current_app.extensions['bluetooth']


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _error(message: str, status: int) -> tuple[Response, int]:
    return jsonify({'success': False, 'error': message}), status


def _run(action: Callable[[], dict[str, Any]]) -> Response | tuple[Response, int]:
    """Run a controller action, mapping bad input to 400 and tool failures to 500."""
    try:
        result = action()
    except ValueError as e:
        return _error(str(e), 400)
    except BluetoothError as e:
        logger.error(f"Bluetooth request {request.path} failed: {e}")
        return _error(str(e), 500)
    return jsonify({'success': True, **result})


def _mac_action(method: Callable[[str], dict[str, Any]]) -> Response | tuple[Response, int]:
    data = _json_body()
    return _run(lambda: method(validate_mac_address(data.get('mac'))))


@bluetooth_bp.route('/init', methods=['POST'])
def init_bluetooth():
    """Spawn (or respawn) bluetoothctl."""
    service = get_service()
    try:
        service.start()
    except BluetoothUnavailableError as e:
        return _error(str(e), 500)
    return jsonify({'success': True, 'message': 'Bluetooth initialized', 'state': service.state.value})


@bluetooth_bp.route('/restart', methods=['POST'])
def restart_bluetooth():
    service = get_service()
    try:
        service.restart()
    except BluetoothUnavailableError as e:
        return _error(str(e), 500)
    return jsonify({'success': True, 'message': 'Bluetooth restarted', 'state': service.state.value})


@bluetooth_bp.route('/power', methods=['POST'])
def set_power():
    data = _json_body()
    return _run(lambda: get_service().set_power(validate_state(data.get('state'))))


@bluetooth_bp.route('/scan', methods=['POST'])
def set_scan():
    data = _json_body()
    return _run(lambda: get_service().set_scan(validate_state(data.get('state'))))


@bluetooth_bp.route('/devices')
def get_devices():
    """Session devices with is_online computed at request time."""
    return jsonify({'success': True, 'devices': get_service().get_devices()})


@bluetooth_bp.route('/pair', methods=['POST'])
def pair_device():
    return _mac_action(get_service().pair)


@bluetooth_bp.route('/trust', methods=['POST'])
def trust_device():
    return _mac_action(get_service().trust)


@bluetooth_bp.route('/connect', methods=['POST'])
def connect_device():
    """
    Connect to a device.

    Pairs and trusts first unless `full_sequence` is false, so a
    first-time connection needs a single call.
    """
    data = _json_body()

    def action() -> dict[str, Any]:
        mac = validate_mac_address(data.get('mac'))
        full_sequence = validate_state(data.get('full_sequence', True), 'full_sequence')
        return get_service().connect(mac, full_sequence=full_sequence)

    return _run(action)


@bluetooth_bp.route('/disconnect', methods=['POST'])
def disconnect_device():
    return _mac_action(get_service().disconnect)


@bluetooth_bp.route('/remove', methods=['POST'])
def remove_device():
    return _mac_action(get_service().remove)


@bluetooth_bp.route('/info', methods=['POST'])
def device_info():
    return _mac_action(get_service().info)


@bluetooth_bp.route('/battery', methods=['POST'])
def device_battery():
    return _mac_action(get_service().battery)


@bluetooth_bp.route('/command', methods=['POST'])
def raw_command():
    """Pass a single line straight to bluetoothctl."""
    data = _json_body()
    return _run(lambda: get_service().raw_command(validate_command(data.get('command'))))


@bluetooth_bp.route('/status')
def get_status():
    return jsonify({'success': True, **get_service().get_status()})


@bluetooth_bp.route('/stream')
def stream_events():
    """SSE mirror of the real-time event feed."""
    service = get_service()
    subscription = service.subscribe()

    def generate():
        last_keepalive = time.time()
        try:
            while True:
                event = subscription.get(timeout=SSE_QUEUE_TIMEOUT)
                if event is not None:
                    last_keepalive = time.time()
                    yield format_sse(event)
                    continue
                if subscription.closed:
                    break
                now = time.time()
                if now - last_keepalive >= SSE_KEEPALIVE_INTERVAL:
                    yield format_sse({'type': 'keepalive'})
                    last_keepalive = now
        finally:
            service.unsubscribe(subscription)

    response = Response(generate(), mimetype='text/event-stream')
    response.headers['Cache-Control'] = 'no-cache'
    response.headers['X-Accel-Buffering'] = 'no'
    response.headers['Connection'] = 'keep-alive'
    return response
