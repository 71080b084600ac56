"""Logging configuration for the crowdfund service."""

import logging
import sys
from typing import Optional

from crowdfund.config import Config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty at INFO, only their warnings are worth seeing
QUIET_LOGGERS = ("web3", "urllib3", "sqlalchemy.engine", "pika", "httpx", "httpcore")


def resolve_level(name: Optional[str]) -> int:
    """Map a level name such as ``"debug"`` to its logging constant, defaulting to INFO."""
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Optional[Config] = None, log_level: Optional[str] = None) -> None:
    """Configure Python logging.

    Records go to stderr so they never mix with command output on stdout.

    Args:
        config: Config object (uses log_level from config if provided)
        log_level: Override log level (takes precedence over config)
    """
    level = resolve_level(log_level or (config.log_level if config else None))
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S", stream=sys.stderr)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
