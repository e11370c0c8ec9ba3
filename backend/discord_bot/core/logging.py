"""Logging configuration"""

import logging

from rich.console import Console
from rich.logging import RichHandler

DATE_FORMAT = "[%Y-%m-%d %H:%M:%S]"

# Chatty at INFO; birthday tick logs stay at the app level
QUIET_LOGGERS = ("discord", "discord.http", "discord.gateway", "asyncpg")


def setup_logging(level_name: str = "INFO") -> None:
    """Route all logging through a Rich console handler."""
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = RichHandler(
        console=Console(width=120),
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_width=120,
        log_time_format=DATE_FORMAT,
    )
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
