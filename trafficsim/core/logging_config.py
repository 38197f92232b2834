"""Trafficsim logging configuration.

Call ``configure_logging()`` once at process startup (e.g. in ``__main__``).
Every other module must define its own logger at module scope:

    import logging
    logger = logging.getLogger(__name__)

Process logging is operator-facing and distinct from the log lines broadcast
to observers; the scheduler mirrors every broadcast line here at INFO.

Every record that reaches the handler carries two correlation fields:

* ``task_id``: the task whose loop emitted it (``-`` outside a loop).
* ``event``: the constant from :mod:`trafficsim.core.events` passed as
  ``extra={"event": ...}`` (``-`` when none was given).

Both appear in the text format and as top-level keys in the JSON format.

Supported environment variables (read at call time):
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR   (default: INFO)
    LOG_FORMAT  text | json                      (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = ["configure_logging", "JsonFormatter", "TASK_ID_CTX", "TaskContextFilter"]

#: Identifier of the task whose loop is currently executing.  Set at the top
#: of every task loop coroutine, so it only lives inside that loop's
#: :class:`asyncio.Task` context.
TASK_ID_CTX: ContextVar[str] = ContextVar("task_id", default="-")

_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
_VALID_FORMATS = ("text", "json")

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(task_id)s] %(event)-20s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "uvicorn.access")


class TaskContextFilter(logging.Filter):
    """Stamp ``task_id`` and ``event`` onto every record the handler sees."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.task_id = TASK_ID_CTX.get()
        if getattr(record, "event", None) is None:
            record.event = "-"
        return True


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Configure the root logger for the entire process.

    Args:
        level: DEBUG, INFO, WARNING or ERROR.  Falls back to ``$LOG_LEVEL``,
            then INFO.
        fmt: ``text`` or ``json``.  Falls back to ``$LOG_FORMAT``, then text.
        force: Replace existing root handlers instead of only adjusting
            the level.

    Raises:
        ValueError: If *level* or *fmt* contain an unrecognised value.
    """
    resolved_level = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    resolved_fmt = (fmt or os.environ.get("LOG_FORMAT", "text")).lower()

    if resolved_level not in _VALID_LEVELS:
        raise ValueError(
            f"Unknown LOG_LEVEL {resolved_level!r}. Must be one of: {', '.join(_VALID_LEVELS)}"
        )
    if resolved_fmt not in _VALID_FORMATS:
        raise ValueError(
            f"Unknown LOG_FORMAT {resolved_fmt!r}. Must be one of: {', '.join(_VALID_FORMATS)}"
        )

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(TaskContextFilter())
    if resolved_fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_TEXT_FORMAT, datefmt=_DATE_FORMAT))

    root.handlers.clear()
    root.addHandler(handler)

    quiet = logging.NOTSET if resolved_level == "DEBUG" else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record.

    Output shape::

        {
            "ts":      "2026-02-28T12:34:56.789Z",
            "level":   "INFO",
            "logger":  "trafficsim.engine.scheduler",
            "task_id": "a3f2b1c0",
            "event":   "ACTION_OK",
            "message": "[SERVER #3] SUCCESS 200 - https://example.com",
            "extra":   {}
        }

    ``extra`` holds any other attribute passed via ``extra=``.
    ``exc_info`` is added only when the record carries an exception.
    """

    _STANDARD_ATTRS = frozenset(
        logging.LogRecord("", 0, "", 0, "", None, None).__dict__
    ) | {"message", "task_id", "event"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "task_id": getattr(record, "task_id", TASK_ID_CTX.get()),
            "event": getattr(record, "event", None) or "-",
            "message": record.getMessage(),
            "extra": {
                key: value
                for key, value in record.__dict__.items()
                if key not in self._STANDARD_ATTRS
            },
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exc_info"] = record.exc_text
        return json.dumps(payload, default=str)
