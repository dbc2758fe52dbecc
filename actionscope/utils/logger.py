"""
actionscope/utils/logger.py

Centralized logging configuration for the project.
Provides a factory function for creating consistently formatted loggers.
All actionscope loggers write to stderr so console reports on stdout stay clean.
"""

import logging

from actionscope.config import Config


# Names of loggers handed out by get_logger(), so verbosity can be changed later.
_configured_loggers: set[str] = set()


# Private functions _______________________________________________________________________________

def _create_handler() -> logging.StreamHandler:
    """
    Create and configure a StreamHandler for stderr logging.
    Returns:
        logging.StreamHandler: Configured handler
    """
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        fmt=Config.LOG_FORMAT,
        datefmt=Config.LOG_DATE_FORMAT
    )
    handler.setFormatter(fmt=formatter)
    return handler


def _configure_logger(logger: logging.Logger) -> logging.Logger:
    """
    Configure a logger with the project's level, handler and format.
    Args:
        logger (logging.Logger): The logger to configure
    Returns:
        logging.Logger: The configured logger
    """
    # set log level
    logger.setLevel(Config.LOG_LEVEL)

    # prevent duplicate handlers
    if not logger.handlers:
        handler = _create_handler()
        logger.addHandler(handler)

    # force handler format consistency even if caplog interferes
    for handler in logger.handlers:
        handler.setFormatter(
            fmt=logging.Formatter(
                fmt=Config.LOG_FORMAT,
                datefmt=Config.LOG_DATE_FORMAT
            )
        )

    # prevent propagation to avoid duplicate logs
    logger.propagate = False
    return logger


# Exports _________________________________________________________________________________________

def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger by name.
    Args:
        name (str): Logger name.
    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name=name)
    _configured_loggers.add(name)
    return _configure_logger(logger)


def set_log_level(level: int) -> None:
    """
    Change the level of every logger created through get_logger().
    Used by the CLI for --verbose / --quiet.
    Args:
        level (int): A logging level such as logging.DEBUG.
    """
    for name in _configured_loggers:
        logging.getLogger(name=name).setLevel(level)
