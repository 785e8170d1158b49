"""Logging setup for the stockbook namespace."""

import logging
import sys
import threading

_LOGGER_PREFIX = 'stockbook'
_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'

_configured = False
_lock = threading.Lock()


def get_logger(name):
    """Get a logger under the stockbook namespace."""
    return logging.getLogger(f'{_LOGGER_PREFIX}.{name}')


def configure_logging(level=logging.INFO, stream=None):
    """Attach a single stream handler to the stockbook logger (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            logging.getLogger(_LOGGER_PREFIX).setLevel(level)
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root_logger.addHandler(handler)


def reset_logging():
    """Drop handlers installed by configure_logging. Used by tests."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
