"""Centralized logging configuration for Registry UI.

Provides one "registry_ui" logger tree shared by the web API, the background
refresh jobs and the purge task.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

# Environment variables
DEBUG_MODE = os.getenv("REGISTRY_UI_DEBUG", "0") == "1"
LOG_LEVEL = os.getenv("REGISTRY_UI_LOG_LEVEL", "DEBUG" if DEBUG_MODE else "INFO")

# Log directory configuration
LOG_DIR = Path(os.getenv("REGISTRY_UI_LOG_DIR", "logs/registry_ui"))

DETAILED_FORMAT = (
    "[%(asctime)s] [%(levelname)-8s] [%(name)s] [%(threadName)s] "
    "[%(filename)s:%(lineno)d] %(message)s"
)
SIMPLE_FORMAT = "[%(asctime)s] [%(levelname)-8s] [%(name)s] %(message)s"

# Use detailed format in debug mode
LOG_FORMAT = DETAILED_FORMAT if DEBUG_MODE else SIMPLE_FORMAT


def _get_file_handler(log_file: Path, level: int) -> logging.FileHandler:
    """Create a rotating file handler for the given log file."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def _get_console_handler(level: int) -> logging.StreamHandler:
    """Create a console handler for streaming logs."""
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def configure_registry_ui_logging(
    log_level: Optional[str] = None,
    include_console: bool = True,
    include_file: bool = True,
) -> logging.Logger:
    """
    Configure logging for the whole application.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_console: Whether to also log to console
        include_file: Whether to write the rotating log file

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = LOG_LEVEL

    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger("registry_ui")
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    if include_file:
        logger.addHandler(_get_file_handler(LOG_DIR / "registry_ui.log", level))

    if include_console:
        logger.addHandler(_get_console_handler(level))

    return logger


def configure_module_logging(module_name: str) -> logging.Logger:
    """
    Get the logger for a specific module.

    This creates a child logger under "registry_ui" namespace that inherits
    its handlers and configuration.

    Args:
        module_name: Module name (e.g., "registry.client", "purge")

    Returns:
        Logger instance
    """
    return logging.getLogger(f"registry_ui.{module_name}")


def setup_all_logging(log_level: Optional[str] = None) -> logging.Logger:
    """Initialize all logging (call once at application startup)."""
    logger = configure_registry_ui_logging(log_level=log_level)

    # Route uvicorn access/error logs through the same handlers
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = list(logger.handlers)

    logger.info("=" * 70)
    logger.info("Registry UI Logging Initialized")
    logger.info("=" * 70)
    logger.info(f"Debug mode: {DEBUG_MODE}")
    logger.info(f"Log level: {logging.getLevelName(logger.level)}")
    logger.info(f"Log file: {LOG_DIR / 'registry_ui.log'}")
    return logger
