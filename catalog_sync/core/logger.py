"""
Centralized logging configuration for the discipline catalog sync engine.

This module provides a consistent logging setup with rotating file handlers
and configurable log levels.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = 'catalog_sync'

LEVEL_MAP = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}


def get_log_level(level_name=None):
    """Convert string log level to logging constant."""
    level_name = level_name or os.getenv('LOG_LEVEL', 'INFO')
    return LEVEL_MAP.get(level_name.upper(), logging.INFO)


def setup_logging(log_level=None, log_file=None):
    """
    Set up application logging with rotating file handler.

    Args:
        log_level: The logging level (default: LOG_LEVEL env or INFO)
        log_file: The log file name or absolute path (default: LOG_FILE env or catalog_sync.log)

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent adding handlers multiple times
    if logger.handlers:
        return logger

    log_level = log_level if log_level is not None else get_log_level()
    log_file = log_file or os.getenv('LOG_FILE', 'catalog_sync.log')
    logger.setLevel(log_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Rotating file handler (10MB max, 5 backup files); an absolute LOG_FILE wins
    log_path = Path(__file__).parent.parent / log_file
    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=10*1024*1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger
