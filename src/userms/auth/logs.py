"""
Loguru sink setup for the identity core.

Modules log through ``from loguru import logger`` directly; this only decides
where those records go.
"""

import sys
from typing import Optional

from loguru import logger

from .config import Settings, get_settings


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Replace loguru's default sink with the configured ones.

    Args:
        settings: Settings to read ``log_level`` / ``log_file`` from
            (defaults to the cached environment settings)
    """
    settings = settings or get_settings()

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level, format=LOG_FORMAT)

    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(settings.log_file),
            level=settings.log_level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )

    logger.debug(f"Logging configured at level {settings.log_level}")
