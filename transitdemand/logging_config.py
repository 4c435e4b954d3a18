"""logging_config.py – console logging for command-line runs."""
import logging
from typing import Iterable

from rich.logging import RichHandler

PACKAGE_LOGGER = "transitdemand"

# geo I/O backends chatter at INFO/DEBUG during spatial joins
NOISY_LOGGERS = ("pyogrio", "fiona", "shapely.geos", "urllib3")


def configure(level: str = "INFO", noisy: Iterable[str] = NOISY_LOGGERS) -> RichHandler:
    """Route everything through one RichHandler; returns that handler."""
    level = level.upper()
    handler = RichHandler(rich_tracebacks=True, show_time=False, show_path=False, markup=False)
    logging.basicConfig(level=level, format="%(name)s │ %(message)s", handlers=[handler], force=True)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)

    floor = max(logging.WARNING, logging.getLogger(PACKAGE_LOGGER).level)
    for name in noisy:
        logging.getLogger(name).setLevel(floor)
    return handler
