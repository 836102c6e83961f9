"""
Logging for the scanner and monitor.

Three sinks hang off the root logger:
  stderr   one line per record: clock, level tag, emitting component, message.
           Detection lines (CROSS-PLATFORM ARB, MATCH, NEW OPPORTUNITY) are
           highlighted so they stand out in a long monitor session.
  log_dir  optional verbose file capturing DEBUG from every module
  ndjson   optional machine-readable file, one JSON object per record
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

_RESET = "\033[0m"
_BOLD = "\033[1m"
_DIM = "\033[2m"
_RED = "\033[31m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_CYAN = "\033[36m"

_LEVEL_TAGS = {
    logging.DEBUG: ("DBG", _DIM),
    logging.INFO: ("INF", _CYAN),
    logging.WARNING: ("WRN", _YELLOW),
    logging.ERROR: ("ERR", _RED),
    logging.CRITICAL: ("CRT", _RED + _BOLD),
}

_HIGHLIGHT_PREFIXES = ("CROSS-PLATFORM ARB", "NEW OPPORTUNITY", "MATCH ")
_COMPONENT_WIDTH = 11
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")
_VERBOSE_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s:%(lineno)d - %(message)s"


def _component(name: str) -> str:
    # "scanner.calculator" -> "calculator", padded to a fixed column
    return name.rsplit(".", 1)[-1][:_COMPONENT_WIDTH].ljust(_COMPONENT_WIDTH)


def _exception_text(record: logging.LogRecord) -> str | None:
    if not record.exc_info or record.exc_info[1] is None:
        return None
    exc = record.exc_info[1]
    return f"{type(exc).__name__}: {exc}"


class ConsoleFormatter(logging.Formatter):
    def __init__(self, use_color: bool = True):
        super().__init__()
        self._use_color = use_color and _supports_color()

    def _paint(self, text: str, style: str) -> str:
        return f"{style}{text}{_RESET}" if self._use_color else text

    def format(self, record: logging.LogRecord) -> str:
        clock = time.strftime("%H:%M:%S", time.localtime(record.created))
        tag, style = _LEVEL_TAGS.get(record.levelno, ("???", ""))
        msg = record.getMessage()
        if msg.startswith(_HIGHLIGHT_PREFIXES):
            msg = self._paint(msg, _GREEN + _BOLD)

        parts = [self._paint(clock, _DIM), self._paint(tag, style), self._paint(_component(record.name), _DIM), msg]
        line = " ".join(parts)

        exc = _exception_text(record)
        if exc:
            line += "\n" + self._paint(f"     {exc}", _RED)
        return line


class JSONFormatter(logging.Formatter):
    """Single-line JSON for machine consumption."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "msg": record.getMessage(),
        }
        exc = _exception_text(record)
        if exc:
            entry["exception"] = exc
        return json.dumps(entry, separators=(",", ":"))


def _file_handler(path: str, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, mode="a")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    level: str = "INFO",
    json_log_file: str | None = None,
    log_dir: str | None = None,
) -> str | None:
    """
    Replace the root logger's handlers with the console sink plus whichever
    file sinks were requested. The console honors `level`; files always
    capture DEBUG.

    Returns the verbose log path (<log_dir>/arb_YYYYMMDD_HHMMSS.log), or
    None when no log_dir was given.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(ConsoleFormatter())
    root.addHandler(console)

    log_path = None
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        log_path = os.path.join(log_dir, f"arb_{stamp}.log")
        root.addHandler(_file_handler(log_path, logging.Formatter(_VERBOSE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")))

    if json_log_file:
        root.addHandler(_file_handler(json_log_file, JSONFormatter()))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_path


def _supports_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stderr, "isatty") and sys.stderr.isatty()
