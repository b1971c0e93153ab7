from __future__ import annotations

import logging
import os
from typing import Optional, Union

from pythonjsonlogger import jsonlogger

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FORMAT_ENV = "RANGEVIEW_LOG_FORMAT"
FORMAT_MODES = ("json", "plain")


def _make_formatter(mode: str) -> logging.Formatter:
    if mode == "plain":
        return logging.Formatter(LOG_FORMAT)
    return jsonlogger.JsonFormatter(LOG_FORMAT)


def configure_logging(
        level: Union[int, str] = logging.INFO,
        force_format: Optional[str] = None,
) -> None:
    """
    Route rangeview's module loggers (and everything else) to stderr.

    The library never calls this itself; applications call it once at
    start-up. `level` may be a number or a level name such as "DEBUG".

    Output is JSON by default, with `extra` fields as keys, or plain text.
    `force_format` wins over the RANGEVIEW_LOG_FORMAT environment variable.

    :raises ValueError: for a format other than "json" or "plain".
    """
    mode = (force_format or os.getenv(LOG_FORMAT_ENV) or "json").lower()
    if mode not in FORMAT_MODES:
        raise ValueError(f"Unknown log format '{mode}', expected one of {FORMAT_MODES}")

    handler = logging.StreamHandler()
    handler.setFormatter(_make_formatter(mode))

    root = logging.getLogger()
    root.setLevel(level.upper() if isinstance(level, str) else level)
    # one handler only, repeated calls must not duplicate output
    root.handlers.clear()
    root.addHandler(handler)
