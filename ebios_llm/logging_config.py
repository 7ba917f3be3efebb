"""Logging setup shared by the library and the CLI."""

import logging

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "ebios_llm"

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure the package logger to render through rich."""
    global _configured

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())

    if not _configured:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
        logger.propagate = False
        _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a component logger under the package namespace."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
