#!/usr/bin/env python3
""" Logging setup shared by the gateway components """

import logging
import sys
from pathlib import Path

# Public API - functions and classes that external scripts should use
__all__ = [
    'EnhancedLogger',
    'get_logger',
    'setup_logging',
    'mask_secret'
]


class EnhancedLogger:
    """ Logger wrapper with a banner helper for lifecycle events """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def header(self, text: str) -> None:
        """ Log a formatted header with dashes and uppercase text """
        self._logger.info("")
        self._logger.info(f"---- {text.upper()} ----")

    def __getattr__(self, name):
        """ Delegate all other methods to the underlying logger """
        return getattr(self._logger, name)


def get_logger(name: str | None = None) -> EnhancedLogger:
    """ Get an enhanced logger for the calling module """
    return EnhancedLogger(logging.getLogger(name or "suno_gateway"))


def setup_logging(
    log_file: str | None = "gateway.log",
    debug: bool = False,
    name: str | None = None
) -> EnhancedLogger:
    """ Standard logging setup: append to a log file and echo to stdout """
    level = logging.DEBUG if debug else logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_path, mode='a'))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)-8s - %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=handlers,
        force=True
    )

    return get_logger(name)


def mask_secret(value: str | None, visible: int = 12) -> str:
    """ Shorten a token or cookie for log output """
    if not value:
        return "<none>"
    if len(value) <= visible:
        return "*" * len(value)
    return f"{value[:visible]}... (length: {len(value)})"
