"""
Logging configuration for the Memorable photo library.
"""

import datetime
import logging
import os
import sys
from typing import List, Optional
from .config import AppConfig

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Libraries that log every request or decoded chunk at DEBUG
QUIET_LOGGERS = ('PIL', 'urllib3', 'requests')


def _resolve_log_file(config: AppConfig, log_prefix: Optional[str]) -> Optional[str]:
    if config.log_file:
        return os.path.expanduser(config.log_file)
    if log_prefix and config.debug_mode:
        timestamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S")
        return f"{log_prefix}_{timestamp}.log"
    return None


def _build_handlers(config: AppConfig, log_file: Optional[str]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
        if config.debug_mode:
            handlers.append(logging.StreamHandler(sys.stdout))
    else:
        handlers.append(logging.StreamHandler(sys.stderr))
    return handlers


def setup_logging(config: AppConfig, log_prefix: Optional[str] = None) -> None:
    """
    Configure the root logger from the application configuration.

    Without a log file, records go to stderr. With one (configured, or a
    timestamped ``<prefix>_<time>.log`` in debug mode), records go to the file
    and, in debug mode, to stdout as well.

    Args:
        config: Application configuration
        log_prefix: Optional prefix for a generated log file name
    """
    log_level = getattr(logging, config.log_level, logging.INFO)
    log_file = _resolve_log_file(config, log_prefix)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=_build_handlers(config, log_file),
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(f"Logging initialized. Library database: {config.database_path}")
    if log_file:
        logger.info(f"Writing log to {log_file}")

    if config.debug_mode:
        logger.debug(f"Debug mode enabled (Python {sys.version.split()[0]} on {sys.platform})")
        logger.debug(
            f"Retries: {config.max_retries}, DB busy timeout: {config.db_busy_timeout} ms, "
            f"geo timeout: {config.geo.timeout} s, nearby: {config.nearby_radius} m / top {config.nearby_limit}"
        )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Name for the logger

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
