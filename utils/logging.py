"""Logging helpers for podcastpi modules."""

from __future__ import annotations

import logging

LOGGER_PREFIX = 'podcastpi'


def get_logger(name: str) -> logging.Logger:
    """Get a namespaced logger for a podcastpi component.

    Handlers and levels come from config.configure_logging(), so this only
    establishes the naming convention.
    """
    return logging.getLogger(f'{LOGGER_PREFIX}.{name}')


app_logger = get_logger('app')
bluetooth_logger = get_logger('bluetooth')
events_logger = get_logger('events')
database_logger = get_logger('database')
