"""Logging configuration for Knowledge Search"""

import logging
import sys
from typing import Optional

from ..config import config

LOG_FILE_NAME = "knowledge-search.log"


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Setup logger with a stderr console handler and a debug file handler

    Args:
        name: Logger name (usually __name__)
        level: Console level (DEBUG, INFO, WARNING, ERROR, CRITICAL); defaults to config.log_level

    Returns:
        Configured logger instance
    """
    level_value = getattr(logging, (level or config.log_level).upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level_value)

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # stdout is reserved for the MCP stdio transport
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level_value)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_dir = config.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8", delay=True)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger
