"""Logging configuration for crawl processes."""

import logging
import sys
from pathlib import Path
from typing import Optional

from scrapture.config import settings

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ('httpx', 'httpcore', 'asyncio')


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    format_string: Optional[str] = None
) -> None:
    """Configure the root logger for a crawl run.

    Args:
        level: Log level name; defaults to settings.LOG_LEVEL
        log_file: Optional log file path (parent directories are created)
        format_string: Optional custom format string
    """
    numeric_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=numeric_level,
        format=format_string or DEFAULT_FORMAT,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
