"""
Logging setup for the Forest Sentinel service and scripts.
"""

import logging
import os
import sys
from typing import Optional


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger with a console handler and an optional file handler.

    Args:
        log_level: Logging level name ('DEBUG', 'INFO', 'WARNING', 'ERROR')
        log_file: Optional log file path, parent directories are created

    Returns:
        The configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # reconfiguring replaces handlers instead of stacking them
    logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
