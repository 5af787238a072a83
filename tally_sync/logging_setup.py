"""Loguru sink configuration for the CLI and the worker."""
from __future__ import annotations
import sys
from typing import Optional
from loguru import logger


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Replace the default sink with stderr (and optionally a rotating file)."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    if log_file:
        logger.add(
            log_file,
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )
