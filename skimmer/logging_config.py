from __future__ import annotations

import logging

from skimmer.config import LoggingSettings

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
PACKAGE_LOGGER = "skimmer"


def configure_logging(settings: LoggingSettings) -> None:
    """Configure process-wide logging once at startup."""

    logging.basicConfig(
        level=_resolve_level(settings.level, logging.INFO),
        format=DEFAULT_LOG_FORMAT,
        force=True,
    )

    for name, level_name in settings.module_levels.items():
        logger_name = name if name.startswith(PACKAGE_LOGGER) else f"{PACKAGE_LOGGER}.{name}"
        logging.getLogger(logger_name).setLevel(_resolve_level(level_name, logging.NOTSET))


def _resolve_level(level_name: str, default: int) -> int:
    level = getattr(logging, level_name.strip().upper(), None)
    return level if isinstance(level, int) else default
