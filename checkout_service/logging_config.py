"""
logging_config.py — Centralized Logging Configuration for the Checkout Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently to both console and file.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-process visibility
    • Standardized log format for all modules
    • Reduced verbosity for the HTTP client libraries (httpx, httpcore)
    • Masking helper so credentials never reach the log in clear text
"""

import logging
import os
import sys


def setup_logging():
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: INFO (default), overridable through `LOG_LEVEL`
        - Log format: timestamp, log level, process ID, and message
        - Output destinations:
            1. File: `LOG_FILE` (default 'checkout_service.log')
            2. Console (stdout): real-time logs, container compatible
        - Reduced verbosity for third-party libraries such as httpx
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format=log_format,
        handlers=[
            # File output
            logging.FileHandler(os.environ.get("LOG_FILE", "checkout_service.log")),
            # Console output (stdout)
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Reduce verbosity from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a configured logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A preconfigured logger that follows the global format and handlers.
    """
    return logging.getLogger(name)


def mask_credential(value):
    """
    Masks a credential for safe logging.

    Long values keep their first 8 and last 4 characters, short values are
    replaced entirely and a missing value is reported as 'NOT SET'.
    """
    if not value or len(value) < 16:
        return '***' if value else 'NOT SET'
    return f"{value[:8]}...{value[-4:]}"
