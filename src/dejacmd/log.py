"""
Logging setup for dejacmd entry points.

Library modules only call logging.getLogger(__name__). Each entry point
calls configure_logging() once to decide where records go:

    "stderr" / "stdout"  -> rich console handler on that stream
    anything else        -> appended to that file path
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "dejacmd"
FILE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

_installed: list[logging.Handler] = []


def installed_handlers() -> list[logging.Handler]:
    """Handlers added by the last configure_logging() call."""
    return list(_installed)


def _console_handler(stream_name: str) -> logging.Handler:
    console = Console(stderr=stream_name == "stderr")
    return RichHandler(console=console, show_path=False, markup=False)


def configure_logging(destination: str = "stderr", verbose: bool = False) -> logging.Logger:
    """
    Route dejacmd log records to a console stream or a file.

    If the file cannot be opened, records go to stderr and the failure is
    logged there.

    Returns:
        The "dejacmd" package logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in _installed:
        logger.removeHandler(handler)
        handler.close()
    _installed.clear()

    target = (destination or "stderr").strip()
    problem: str | None = None
    if target.lower() in ("stderr", "stdout"):
        handler = _console_handler(target.lower())
    else:
        try:
            handler = logging.FileHandler(target, mode="a", encoding="utf-8")
            handler.setFormatter(logging.Formatter(FILE_FORMAT))
        except OSError as e:
            problem = f"Cannot open log file {target}: {e}"
            handler = _console_handler("stderr")

    logger.addHandler(handler)
    _installed.append(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    if problem:
        logger.warning("%s; logging to stderr", problem)
    return logger

