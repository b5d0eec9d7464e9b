"""
Central logging configuration for chronome.

Suppresses verbose debug logs from third-party libraries while keeping the
pipeline's own diagnostics available on demand.
"""

import logging
import os
from typing import Optional

DEBUG_ENV = "CHRONOME_DEBUG"
LOG_LEVEL_ENV = "CHRONOME_LOG_LEVEL"

NOISY_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
}


def env_debug_enabled() -> bool:
    return os.getenv(DEBUG_ENV, "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(log_level: Optional[str] = None, force_debug: Optional[bool] = None) -> int:
    """
    Configure logging levels for chronome.

    Args:
        log_level: Level name from configuration (DEBUG, INFO, WARNING, ERROR)
        force_debug: Override debug mode (None to use env var detection)

    Returns:
        The effective root level

    Environment Variables:
        CHRONOME_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        CHRONOME_LOG_LEVEL: Override the configured level
    """
    env_log_level = os.getenv(LOG_LEVEL_ENV, "").upper()
    level_name = (log_level or "INFO").upper()
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        level_name = env_log_level

    debug = force_debug if force_debug is not None else env_debug_enabled()
    root_level = logging.DEBUG if debug else getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s"))
        root_logger.addHandler(handler)

    for logger_name, level in NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(max(level, root_level))

    logging.getLogger("chronome").setLevel(root_level)
    root_logger.debug("Logging configured at %s", logging.getLevelName(root_level))
    return root_level
