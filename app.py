"""
PODCASTPI - Bluetooth controller server

Flask application factory and entry point.
"""

from __future__ import annotations

import atexit
import sys

from flask import Flask
from flask_socketio import SocketIO

import config
from utils.bluetooth import BluetoothService, BluetoothUnavailableError
from utils.database import init_db
from utils.dependencies import check_all_dependencies
from utils.logging import app_logger as logger


def create_app(
    service: BluetoothService | None = None,
    start_bluetooth: bool | None = None,
) -> Flask:
    """
    Build the application.

    Args:
        service: Controller to expose, a new one is built when omitted
        start_bluetooth: Spawn bluetoothctl now, defaults to config.BT_AUTO_START
    """
    app = Flask(__name__)

    init_db()

    if service is None:
        service = BluetoothService()
    app.extensions['bluetooth'] = service

    from routes import register_blueprints
    register_blueprints(app)

    socketio = SocketIO(app, cors_allowed_origins='*', async_mode='threading')
    from routes.events import register_socketio_handlers
    register_socketio_handlers(socketio)

    if config.BT_AUTO_START if start_bluetooth is None else start_bluetooth:
        try:
            service.start()
        except BluetoothUnavailableError as e:
            # Keep serving; /api/init can retry once the tool is installed
            logger.error(f"Bluetooth unavailable: {e}")

    return app


def main() -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description='PodcastPi - Bluetooth controller server',
        epilog='Environment variables: PODCASTPI_HOST, PODCASTPI_PORT, PODCASTPI_DEBUG, '
               'PODCASTPI_LOG_LEVEL, PODCASTPI_DB_PATH, PODCASTPI_BT_*'
    )
    parser.add_argument(
        '-p', '--port',
        type=int,
        default=config.PORT,
        help=f'Port to run server on (default: {config.PORT})'
    )
    parser.add_argument(
        '-H', '--host',
        default=config.HOST,
        help=f'Host to bind to (default: {config.HOST})'
    )
    parser.add_argument(
        '-d', '--debug',
        action='store_true',
        default=config.DEBUG,
        help='Enable debug mode'
    )
    parser.add_argument(
        '--no-bluetooth',
        action='store_true',
        help='Do not spawn bluetoothctl on start-up'
    )
    parser.add_argument(
        '--check-deps',
        action='store_true',
        help='Check dependencies and exit'
    )
    args = parser.parse_args()

    # Check dependencies only
    if args.check_deps:
        results = check_all_dependencies()
        print("Dependency Status:")
        print("-" * 40)
        for group, info in results.items():
            status = "✓" if info['ready'] else "✗"
            print(f"\n{status} {info['name']}:")
            for tool, tool_info in info['tools'].items():
                tool_status = "✓" if tool_info['installed'] else "✗"
                req = " (required)" if tool_info['required'] else ""
                print(f"    {tool_status} {tool}{req}")
        sys.exit(0 if all(info['ready'] for info in results.values()) else 1)

    config.configure_logging()

    print("=" * 50)
    print(f"  PODCASTPI // Bluetooth controller v{config.VERSION}")
    print("=" * 50)
    print()

    app = create_app(start_bluetooth=False if args.no_bluetooth else None)
    atexit.register(app.extensions['bluetooth'].shutdown)

    print(f"Open http://localhost:{args.port} in your browser")
    print()
    print("Press Ctrl+C to stop")
    print()

    app.extensions['socketio'].run(
        app,
        host=args.host,
        port=args.port,
        debug=args.debug,
        use_reloader=False,
        allow_unsafe_werkzeug=True,
    )


if __name__ == '__main__':
    main()
