"""Loguru configuration for Orchestra entry points."""

import sys
from pathlib import Path

from loguru import logger

from orchestra.core.config import Settings, get_settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(settings: Settings | None = None, log_to_file: bool = True) -> None:
    """Configure loguru based on settings.

    Only entry points (the CLI, an embedding service) should call this.
    Library modules just import ``logger`` from loguru.

    Args:
        settings: Optional settings override.
        log_to_file: Also write a rotating log file under ``orchestra_log_dir``.
    """
    settings = settings or get_settings()
    level = "DEBUG" if settings.orchestra_debug else settings.orchestra_log_level

    logger.remove()  # Remove default handler

    if log_to_file:
        logs_dir = Path(settings.orchestra_log_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(logs_dir / "orchestra_{time:YYYY-MM-DD}.log"),
            rotation="1 day",
            retention="7 days",
            level=settings.orchestra_log_level,
            format=LOG_FORMAT,
        )

    logger.add(
        sys.stderr,
        level=level,
        format=LOG_FORMAT,
        colorize=True,
    )
