"""Logging setup for the service."""

import logging
import sys


def setup_logger(log_level: str = "INFO", name: str = "pr_watchdog") -> logging.Logger:
    """
    Set up and configure service logging.

    Configures the root logger with a simple, readable format that works both
    for the CLI and for the uvicorn-hosted webhook service. Modules log through
    `logging.getLogger(__name__)` and inherit the level set here, so this is
    called once per process with the configured LOG_LEVEL.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        name: Name of the logger to return (default: pr_watchdog)

    Returns:
        logging.Logger: Logger for `name` at the configured level
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stdout,
        force=True,  # Override any existing configuration
    )

    return logging.getLogger(name)
