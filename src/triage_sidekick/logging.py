"""Log output for the server and the CLI.

Records go to stdout either as JSON lines (the default, for log collectors) or
as ``key=value`` text for a terminal. Fields passed through ``extra=`` travel
with the record in both formats.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any

# Attributes every LogRecord carries; anything else came in through ``extra=``.
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# HTTP client and access-log chatter, capped at WARNING.
QUIET_LOGGERS = ("urllib3", "github", "httpx", "websockets", "uvicorn.access")


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """The ``extra=`` fields attached to ``record``."""

    return {
        key: value
        for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        line: dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "src": f"{record.module}:{record.lineno}",
        }
        context = record_context(record)
        if context:
            line["context"] = context
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


class KeyValueFormatter(logging.Formatter):
    """``<ts> <LEVEL> <logger>: <message> key=value ...`` for reading in a terminal."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        parts = [
            _timestamp(record),
            f"{record.levelname:<7}",
            f"{record.name}:",
            record.getMessage(),
        ]
        parts.extend(f"{key}={value!r}" for key, value in record_context(record).items())
        text = " ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


FORMATTERS: dict[str, type[logging.Formatter]] = {
    "json": JsonFormatter,
    "text": KeyValueFormatter,
}


def configure_logging(level: str, fmt: str = "json", *, stream: IO[str] | None = None) -> None:
    """Send all logging to one stdout handler; safe to call more than once."""

    try:
        formatter = FORMATTERS[fmt]()
    except KeyError:
        choices = ", ".join(sorted(FORMATTERS))
        raise ValueError(f"Unknown log format {fmt!r}; expected one of: {choices}") from None

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(formatter)
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)

    quiet_level = max(logging.getLogger().level, logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
