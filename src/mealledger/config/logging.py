"""Logging setup for the command line tools."""

from __future__ import annotations

import logging

# request-level loggers of the HTTP stack
_CHATTY_LOGGERS = ("httpx", "httpcore", "hishel")


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Configure the root logger for operator-facing output.

    Third-party HTTP loggers stay at WARNING unless ``level`` is DEBUG.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    http_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(http_level)
