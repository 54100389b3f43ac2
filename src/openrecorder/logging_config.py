"""Logging setup for openrecorder."""

import logging
import sys
from typing import TextIO

from openrecorder.config import CONFIG

_THIRD_PARTY_LOGGERS = ('cdp_use', 'websockets', 'httpx', 'httpcore', 'bubus', 'asyncio')

_configured = False


def setup_logging(
    stream: TextIO | None = None,
    log_level: str | None = None,
    force_setup: bool = False,
) -> logging.Logger:
    """Configure the root logger and quiet down protocol-level chatter.

    Args:
        stream: Output stream for the handler, defaults to stderr.
        log_level: Level name, defaults to OPENRECORDER_LOGGING_LEVEL.
        force_setup: Replace existing root handlers even if already configured.

    Returns:
        The package logger.
    """
    global _configured

    if _configured and not force_setup:
        return logging.getLogger('openrecorder')

    level_name = (log_level or CONFIG.LOGGING_LEVEL).upper()
    level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if force_setup:
        for handler in list(root.handlers):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    root.addHandler(handler)
    root.setLevel(level)

    # Protocol libraries log every frame at debug level
    cdp_level = getattr(logging, CONFIG.CDP_LOGGING_LEVEL, logging.WARNING)
    for name in _THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(max(cdp_level, level))

    _configured = True
    return logging.getLogger('openrecorder')
