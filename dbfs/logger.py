"""Module with the dbfs logger and helpers that keep log messages readable."""

import logging
from typing import Any

# Messages are written to stderr, which is detached once dbfs runs in the background.
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def _create_logger() -> logging.Logger:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger = logging.getLogger("dbfs")
    logger.addHandler(handler)

    return logger


def set_verbosity(verbose: bool) -> None:
    """Show debug messages, like every query that is run, only when verbose."""
    log.setLevel(logging.DEBUG if verbose else logging.INFO)


def summarize(obj: Any, max_length: int = 255) -> str:
    """
    Return str(obj), cut off with an ellipsis if it's longer than max_length.

    Query texts, sqlcmd command lines and sqlcmd error output can be arbitrarily long.
    """
    text = str(obj)

    if len(text) > max_length:
        text = text[: max_length - 3] + "..."

    return text


log = _create_logger()
