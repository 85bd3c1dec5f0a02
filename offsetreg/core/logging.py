"""Logging setup for scripts and notebooks that use offsetreg."""

import logging
from typing import Optional, Union

from offsetreg.core.config import settings


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """
    Configure root logging for an application using offsetreg.

    The library itself only creates module loggers; call this from the
    application entry point to see fit and resampling progress.

    Args:
        level: Logging level name or number. Defaults to settings.LOG_LEVEL
    """
    level = level if level is not None else settings.LOG_LEVEL
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
