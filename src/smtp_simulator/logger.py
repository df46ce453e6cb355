"""Logging utilities for the SMTP session simulator.

This module provides a centralized logging helper. The actual logging setup
(level, handlers, format) is configured once via ``logging.basicConfig()``
in the entry point (see :func:`smtp_simulator.cli.configure_logging`) to
avoid duplicate handlers.

Example:
    Typical usage in a module::

        from smtp_simulator.logger import get_logger

        logger = get_logger("Channel")
        logger.debug("Attempt 1 (loss probability 10.0%)")
"""

import logging

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "SMTPSimulator") -> logging.Logger:
    """Retrieve a logger instance.

    This function returns a standard library logger with the specified name.
    It does not configure handlers or formatters; that responsibility lies
    with the application entry point.

    Args:
        name: The logger name. Defaults to "SMTPSimulator".

    Returns:
        A ``logging.Logger`` instance bound to the given name.
    """
    return logging.getLogger(name)
