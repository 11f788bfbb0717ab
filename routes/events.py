"""
Socket.IO surface for controller events.

Each connected client gets its own subscription on the event broadcaster.
The replay queued at subscribe time is sent from the connect handler, then
a background task pumps the rest of the subscription to that client only.
"""

from __future__ import annotations

import json
import threading
from typing import Any

from flask import current_app, request
from flask_socketio import SocketIO, emit

from utils.bluetooth import BluetoothService, Subscription
from utils.constants import SSE_QUEUE_TIMEOUT
from utils.logging import events_logger as logger

_subscriptions: dict[str, Subscription] = {}
_subscriptions_lock = threading.Lock()


def _parse_message(data: Any) -> dict | None:
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError:
            return None
    if not isinstance(data, dict) or not isinstance(data.get('type'), str):
        return None
    return data


def _pump(socketio: SocketIO, sid: str, subscription: Subscription) -> None:
    while not subscription.closed:
        event = subscription.get(timeout=SSE_QUEUE_TIMEOUT)
        if event is not None:
            socketio.emit('message', event, to=sid)
    logger.debug(f"Event pump for {sid} stopped")


def register_socketio_handlers(socketio: SocketIO) -> None:
    """Attach the connect, disconnect and message handlers."""

    @socketio.on('connect')
    def handle_connect(auth=None):
        service: BluetoothService = current_app.extensions['bluetooth']
        sid = request.sid
        subscription = service.subscribe()

        with _subscriptions_lock:
            previous = _subscriptions.pop(sid, None)
            _subscriptions[sid] = subscription
        if previous is not None:
            service.unsubscribe(previous)

        logger.info(f"Client connected: {sid}")
        for event in subscription.drain():
            emit('message', event)
        socketio.start_background_task(_pump, socketio, sid, subscription)

    @socketio.on('disconnect')
    def handle_disconnect(reason=None):
        sid = request.sid
        with _subscriptions_lock:
            subscription = _subscriptions.pop(sid, None)
        if subscription is not None:
            current_app.extensions['bluetooth'].unsubscribe(subscription)
        logger.info(f"Client disconnected: {sid}")

    @socketio.on('message')
    def handle_message(data):
        message = _parse_message(data)
        if message is None:
            logger.warning(f"Ignoring malformed message from {request.sid}: {data!r}")
            return

        if message['type'] == 'ping':
            emit('message', {'type': 'pong'})
        elif message['type'] == 'request-status':
            for event in current_app.extensions['bluetooth'].snapshot():
                emit('message', event)
        else:
            logger.debug(f"Unhandled message type {message['type']!r} from {request.sid}")
