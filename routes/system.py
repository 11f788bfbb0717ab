"""Health and dependency routes."""

from __future__ import annotations

import platform
import time

from flask import Blueprint, current_app, jsonify

import config
from utils import database
from utils.dependencies import check_all_dependencies

system_bp = Blueprint('system', __name__)


def aggregate_status(*statuses: str) -> str:
    """ok when every part is ok, error when all failed, degraded otherwise."""
    if all(status == 'ok' for status in statuses):
        return 'ok'
    if all(status == 'error' for status in statuses):
        return 'error'
    return 'degraded'


@system_bp.route('/health')
def health():
    service = current_app.extensions['bluetooth']
    bluetooth = service.get_health()
    db = database.get_health()
    status = aggregate_status(bluetooth['status'], db['status'])

    return jsonify({
        'status': status,
        'version': config.VERSION,
        'uptime': round(time.time() - service.started_at, 1),
        'timestamp': time.time(),
        'services': {
            'bluetooth': bluetooth,
            'database': db,
        },
    }), 200 if status != 'error' else 503


@system_bp.route('/dependencies')
def get_dependencies():
    """Get status of all tool dependencies."""
    system = platform.system().lower()
    return jsonify({
        'os': system,
        'install_method': 'apt' if system == 'linux' else 'manual',
        'modes': check_all_dependencies(),
    })
