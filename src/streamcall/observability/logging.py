from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from .context import snapshot

# Attributes every LogRecord carries; anything else on a record came from `extra`.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))) | {"message", "asctime"}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)
    return value


class _JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, event, turn context, then fields."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(snapshot())
        payload.update(
            {k: _jsonable(v) for k, v in record.__dict__.items() if k not in _RECORD_ATTRS and not k.startswith("_")}
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class KVLogger:
    """Event-style adapter: `log.info("tool_ok", tool=..., attempt=...)`.

    Keyword arguments become record attributes. `bind()` returns a child that
    adds the same fields to every record it emits.
    """

    __slots__ = ("_logger", "_bound")

    def __init__(self, logger: logging.Logger, bound: dict[str, object] | None = None):
        self._logger = logger
        self._bound: dict[str, object] = dict(bound or {})

    def bind(self, **fields: object) -> "KVLogger":
        return KVLogger(self._logger, {**self._bound, **fields})

    def debug(self, event: str, **fields: object) -> None:
        self._emit(logging.DEBUG, event, fields)

    def info(self, event: str, **fields: object) -> None:
        self._emit(logging.INFO, event, fields)

    def warning(self, event: str, **fields: object) -> None:
        self._emit(logging.WARNING, event, fields)

    def error(self, event: str, **fields: object) -> None:
        self._emit(logging.ERROR, event, fields)

    def exception(self, event: str, **fields: object) -> None:
        self._emit(logging.ERROR, event, fields, exc_info=True)

    def _emit(self, level: int, event: str, fields: dict[str, object], *, exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, event, extra={**self._bound, **fields}, exc_info=exc_info)


_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the root logger; later calls only change the level."""

    global _configured
    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    _configured = True


def get_logger(name: str = "streamcall") -> KVLogger:
    return KVLogger(logging.getLogger(name))
