"""
Loguru configuration shared by every module of the engine.

Import `logger` from here rather than from loguru directly so the sinks are
configured exactly once.
"""

import sys

from loguru import logger

from migrator.core.config import settings

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[app_name]}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(
    app_name: str = "migrator",
    log_level: str = "INFO",
    json_logs: bool = False,
) -> None:
    """
    (Re)configure the global loguru logger.

    Args:
        app_name: Name attached to every record as ``extra.app_name``.
        log_level: Minimum level emitted.
        json_logs: Serialize records as JSON lines instead of text.
    """
    logger.remove()
    logger.configure(extra={"app_name": app_name})

    if json_logs:
        logger.add(sys.stderr, level=log_level.upper(), serialize=True)
    else:
        logger.add(sys.stderr, level=log_level.upper(), format=TEXT_FORMAT)


configure_logging(**settings.logging_config)

__all__ = ["logger", "configure_logging"]
