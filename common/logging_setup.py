from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict, Optional

from common.utils import strip_color_codes

_HANDLER_ATTR = "_worldmap_handler"


def _structured(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    """Fields passed as `extra={"extra": {...}}`, if any."""
    fields = getattr(record, "extra", None)
    return fields if isinstance(fields, dict) else None


class JsonFormatter(logging.Formatter):
    """
    One object per line, e.g.
      {"t": 1718000000000, "lvl": "INFO", "name": "scanner.orchestrator",
       "msg": "batch done", "extra": {"chunks_per_s": 41.5}}
    `msg` has in-game `§x` codes removed; `t` is the record's creation time in ms.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        out: Dict[str, Any] = dict(
            t=int(record.created * 1000),
            lvl=record.levelname,
            name=record.name,
            msg=strip_color_codes(record.getMessage()),
        )
        fields = _structured(record)
        if fields is not None:
            out["extra"] = fields
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(out, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """`HH:MM:SS LEVEL name: msg key=value ...` for interactive scanner runs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = "%s %-7s %s: %s" % (
            time.strftime("%H:%M:%S", time.localtime(record.created)),
            record.levelname,
            record.name,
            strip_color_codes(record.getMessage()),
        )
        fields = _structured(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    `level` falls back to LOG_LEVEL, then INFO. `fmt` falls back to LOG_FORMAT;
    "text" picks ConsoleFormatter, anything else JSON lines. Once installed,
    later calls only apply an explicitly passed level or format.
    """
    root = logging.getLogger()
    formatter = ConsoleFormatter() if (fmt or os.environ.get("LOG_FORMAT") or "json").lower() == "text" else JsonFormatter()

    installed = getattr(root, _HANDLER_ATTR, None)
    if installed is not None:
        if level:
            root.setLevel(_resolve_level(level))
        if fmt:
            installed.setFormatter(formatter)
        return

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    root.handlers[:] = [stream]
    root.setLevel(_resolve_level(level))
    setattr(root, _HANDLER_ATTR, stream)


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures the root handler on first use."""
    setup_logging()
    return logging.getLogger(name)
