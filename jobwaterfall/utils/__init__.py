"""
Utils Module

Shared utilities, helpers, and common functionality.

Components:
    - logger: Logging with daily files, rotation and colorized output
    - exceptions: Error taxonomy shared by every tier
"""

from jobwaterfall.utils.logger import (
    LoggerConfig,
    configure_package_logging,
    get_api_logger,
    get_cost_logger,
    get_logger,
    get_parser_logger,
    get_scraper_logger,
    setup_logger,
)

__all__ = [
    # Logger utilities
    "LoggerConfig",
    "setup_logger",
    "get_logger",
    "configure_package_logging",
    "get_cost_logger",
    "get_api_logger",
    "get_parser_logger",
    "get_scraper_logger",
]
