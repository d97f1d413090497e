"""
logging_config.py — Centralized Logging Configuration for the Checkout Service

Every module logs through the standard `logging` package; this module wires the
handlers once at application start.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-worker deployments
    • Reduced verbosity for external client libraries (pika, httpx, stripe)
"""

import logging
import sys

from . import config


def setup_logging(level: str = None, log_file: str = None):
    """
    Configures the global logging system for the application.

    Args:
        level (str): Log level name. Defaults to `config.LOG_LEVEL`.
        log_file (str): Path of the persistent log file. Defaults to `config.LOG_FILE`.
            An empty string disables the file handler.
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'
    level = level or config.LOG_LEVEL
    log_file = config.LOG_FILE if log_file is None else log_file

    # Console output (stdout, container-compatible)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers,
    )

    for noisy in ("pika", "httpx", "httpcore", "stripe"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a logger for a given module, typically called with `__name__`.
    """
    return logging.getLogger(name)
