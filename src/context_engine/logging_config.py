"""Logging setup for host processes that do not configure logging themselves."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Apply a basic logging configuration.

    Args:
        level: Level name (e.g. "DEBUG") or numeric level

    Raises:
        ValueError: If the level name is unknown
    """
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"Unknown log level: {level}")
        level = numeric
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("context_engine").setLevel(level)
