"""
Structured logging configuration for NFTMarket.

Supports two output formats:
  - **human** – coloured, single-line, readable
  - **json**  – newline-delimited JSON for log aggregators

Module loggers are named ``nftmarket_<area>`` (``nftmarket_chain``,
``nftmarket_marketplace``, ``nftmarket_api`` …).

Usage:
    from nftmarket_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="logs/devnet.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from nftmarket_core.config import LoggingConfig

# Third-party loggers that are too chatty at INFO.
_QUIET_LOGGERS = ("aiohttp.access",)


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


class HumanFormatter(logging.Formatter):
    """Coloured, concise single-line format."""

    COLOURS = {
        "DEBUG": "\033[36m",     # cyan
        "INFO": "\033[32m",      # green
        "WARNING": "\033[33m",   # yellow
        "ERROR": "\033[31m",     # red
        "CRITICAL": "\033[1;31m",  # bold red
    }
    RESET = "\033[0m"

    def __init__(self, colour: bool = True):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, "") if self.colour else ""
        reset = self.RESET if self.colour else ""
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{colour}{ts} [{record.levelname:<7}]{reset} {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger for the entire application.

    Parameters
    ----------
    level : str
        One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
    fmt : str
        ``"human"`` for coloured single-line output, ``"json"`` for
        newline-delimited JSON.
    log_file : str, optional
        If provided, logs are *also* written to this file (always in JSON
        format for machine parsing).
    """
    if fmt not in ("human", "json"):
        raise ValueError(f"unknown log format: {fmt!r}")
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove any existing handlers (avoid duplicates on reload)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(HumanFormatter(colour=sys.stderr.isatty()))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path))
        fh.setFormatter(JSONFormatter())  # always JSON for files
        root.addHandler(fh)

    if root.level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def setup_from_config(cfg: LoggingConfig) -> None:
    setup_logging(level=cfg.level, fmt=cfg.format, log_file=cfg.file)
