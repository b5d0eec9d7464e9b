"""chronome - resolves today's meetings from independently updated calendar backends.

Imports are kept light so the package can be inspected without pulling in the
runtime stack; the service is loaded by ``run_service``.
"""

__version__ = "1.0.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Sets a colorized formatter and level so that early startup messages are
    visible. Honors the CHRONOME_DEBUG environment variable (truthy values:
    "1", "true", "yes", "on"), which forces DEBUG verbosity.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("CHRONOME_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message, with only the level colorized
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug("Logging initialized at level %s", logging.getLevelName(level))


def run_service(args: Optional[object] = None) -> int:
    """Run chronome from parsed command line arguments.

    Behavior:
    - Initialize console logging early using CHRONOME_LOG_LEVEL (env) if present.
    - Load configuration from --config, CHRONOME_CONFIG or ./chronome.yaml.
    - Apply the configured (or --log-level) level via configure_logging.
    - Run once (--once) or until SIGINT/SIGTERM.

    Returns:
        Process exit code
    """
    import asyncio
    import logging
    import os

    _init_logging(os.environ.get("CHRONOME_LOG_LEVEL"))

    from .config_loader import load_config
    from .exceptions import ConfigError
    from .logging_config import configure_logging
    from .service import serve

    logger = logging.getLogger(__name__)

    config_path = getattr(args, "config", None)
    try:
        config = load_config(config_path)
    except ConfigError:
        logger.exception("Invalid configuration")
        return 2

    log_level = getattr(args, "log_level", None) or config.log_level
    configure_logging(log_level)

    once = bool(getattr(args, "once", False))
    try:
        return asyncio.run(serve(config, once=once))
    except KeyboardInterrupt:
        return 0
