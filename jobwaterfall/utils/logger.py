"""
Logging utility for the job acquisition pipeline.

Provides multi-destination logging with:
- Daily log files (YYYYMMDD prefix) with size-based rotation
- Colorized console output via colorlog
- Module-specific logger instances with caching
- Specialized loggers for cost tracking, upstream calls, decoding and scraping
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

import colorlog

from jobwaterfall.config import LoggingConfig


# Global logger cache to prevent duplicate logger creation
_LOGGER_CACHE: Dict[str, logging.Logger] = {}


class LoggerConfig:
    """
    Centralized logger configuration manager.

    Manages log directories, file naming conventions, and formatting rules.
    """

    def __init__(self):
        """Initialize logger configuration from application settings."""
        self.log_dir = LoggingConfig.LOG_DIR
        self.log_level = getattr(logging, LoggingConfig.LOG_LEVEL.upper(), logging.INFO)
        self.max_bytes = LoggingConfig.MAX_LOG_SIZE
        self.backup_count = LoggingConfig.BACKUP_COUNT

        self.file_format = LoggingConfig.LOG_FORMAT
        self.date_format = LoggingConfig.DATE_FORMAT

        self.console_format = (
            "%(log_color)s%(levelname)-8s%(reset)s "
            "%(cyan)s%(name)s%(reset)s - %(message)s"
        )
        self.log_colors = {
            "DEBUG": "white",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }

        LoggingConfig.ensure_log_directory()

    def get_daily_log_filename(self, logger_name: str) -> str:
        """
        Generate daily log filename with YYYYMMDD prefix.

        Args:
            logger_name: Name of the logger

        Returns:
            Formatted log filename (e.g., '20261018_jobwaterfall_orchestrator.log')
        """
        date_prefix = datetime.now().strftime("%Y%m%d")
        base_name = logger_name.replace(".", "_").lower()
        return f"{date_prefix}_{base_name}.log"

    def get_log_file_path(self, logger_name: str) -> Path:
        """Get full path to log file for given logger."""
        return self.log_dir / self.get_daily_log_filename(logger_name)


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Create and configure a logger instance with file and console handlers.

    Args:
        name: Logger name (typically __name__ of calling module)
        level: Optional custom log level (defaults to config setting)

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logger("jobwaterfall")
        >>> logger.info("Pipeline started")
    """
    if name in _LOGGER_CACHE:
        return _LOGGER_CACHE[name]

    config = LoggerConfig()
    logger = logging.getLogger(name)
    logger.setLevel(level or config.log_level)

    # Prevent duplicate handlers on repeated calls
    if logger.handlers:
        _LOGGER_CACHE[name] = logger
        return logger

    file_handler = RotatingFileHandler(
        filename=config.get_log_file_path(name),
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(fmt=config.file_format, datefmt=config.date_format)
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(config.log_level)
    console_handler.setFormatter(
        colorlog.ColoredFormatter(
            fmt=config.console_format,
            datefmt=config.date_format,
            log_colors=config.log_colors,
        )
    )

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    _LOGGER_CACHE[name] = logger
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Retrieve cached logger instance or create new one.

    Args:
        name: Logger name (typically __name__ of calling module)

    Returns:
        Cached or newly created logger instance
    """
    if name in _LOGGER_CACHE:
        return _LOGGER_CACHE[name]
    return setup_logger(name)


def configure_package_logging(level: Optional[int] = None) -> logging.Logger:
    """
    Attach handlers to the package root logger.

    Modules log through ``logging.getLogger(__name__)``; configuring the
    ``jobwaterfall`` logger once routes all of them to the same handlers.

    Example:
        >>> from jobwaterfall.utils.logger import configure_package_logging
        >>> configure_package_logging(logging.DEBUG)
    """
    return setup_logger("jobwaterfall", level)


def get_cost_logger() -> logging.Logger:
    """Get specialized logger for budget and spend tracking."""
    return get_logger("jobwaterfall.cost")


def get_api_logger() -> logging.Logger:
    """Get specialized logger for upstream API calls."""
    return get_logger("jobwaterfall.api")


def get_parser_logger() -> logging.Logger:
    """Get specialized logger for response decoding and HTML extraction."""
    return get_logger("jobwaterfall.parser")


def get_scraper_logger() -> logging.Logger:
    """Get specialized logger for browser-backed scraping."""
    return get_logger("jobwaterfall.scraper")
