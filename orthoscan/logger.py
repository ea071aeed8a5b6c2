"""
Structured JSON Logging Module.

Every record is written as one JSON object per line, to stdout and to a
rotating log file, so the sweep output and the ``AUDIT:`` trail can be
shipped to any JSON log collector.

Services receive a ``StructuredLogger`` through their constructor; the
composition root creates one parent and hands each service a ``child``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO, Union

ExtraValue = Union[str, int, float, bool, None]


class JSONFormatter(logging.Formatter):
    """Render a ``LogRecord`` as a JSON object.

    Keys: ``timestamp`` (ISO-8601 UTC), ``level``, ``logger_name``,
    ``message``, then ``extra`` and ``exception`` when present.
    """

    _RESERVED: frozenset[str] = frozenset(
        vars(logging.makeLogRecord({})).keys()
    ) | {"message", "asctime"}

    @staticmethod
    def _scalar(value: object) -> ExtraValue:
        # bool is an int subclass; both pass through untouched.
        if value is None or isinstance(value, (str, int, float)):
            return value
        return str(value)

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: self._scalar(value)
            for key, value in vars(record).items()
            if key not in self._RESERVED
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            payload["exception"] = record.exc_text

        return json.dumps(payload, ensure_ascii=False)


class StructuredLogger:
    """Injectable wrapper around a ``logging.Logger`` with JSON handlers.

    Handler settings default to ``AppConfig`` (``LOG_LEVEL``, ``LOG_FILE``,
    ``LOG_MAX_BYTES``, ``LOG_BACKUP_COUNT``); explicit arguments win.
    Handlers are attached only the first time a name is seen, so building
    two instances with the same name never duplicates output.

    Usage::

        log = StructuredLogger(name="orthoscan")
        lab_log = log.child("lab", sweep_date="2026-01-19")
        lab_log.info("Replenishment raised", extra={"case_id": "A-0001"})
    """

    def __init__(
        self,
        name: str = "orthoscan",
        level: Optional[int] = None,
        stream: Union[TextIO, None] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Imported here: orthoscan.config logs through the stdlib at import time.
        from orthoscan.config import get_config
        cfg = get_config()

        resolved_level = level if level is not None else logging.getLevelName(cfg.LOG_LEVEL.upper())
        if not isinstance(resolved_level, int):
            resolved_level = logging.INFO

        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(resolved_level)
        self._context: dict[str, ExtraValue] = {}

        if not self._logger.handlers:
            self._attach_handlers(
                level=resolved_level,
                stream=stream or sys.stdout,
                log_file=log_file or cfg.LOG_FILE,
                max_bytes=max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backup_count=backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
            )

    def _attach_handlers(
        self,
        level: int,
        stream: TextIO,
        log_file: str,
        max_bytes: int,
        backup_count: int,
    ) -> None:
        formatter = JSONFormatter()

        console = logging.StreamHandler(stream)
        console.setLevel(level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        try:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            rotating = RotatingFileHandler(
                filename=str(path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Log file '%s' unavailable (%s); logging to the console only.",
                log_file,
                exc,
            )
            return
        rotating.setLevel(level)
        rotating.setFormatter(formatter)
        self._logger.addHandler(rotating)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def context(self) -> dict[str, ExtraValue]:
        return dict(self._context)

    def child(self, suffix: str, **context: ExtraValue) -> "StructuredLogger":
        """Return a logger named ``<name>.<suffix>``.

        The child writes through this logger's handlers.  Keyword
        arguments are bound as context and added to the ``extra`` of every
        record it emits, on top of any context inherited from the parent.
        """
        child = StructuredLogger.__new__(StructuredLogger)
        child._logger = self._logger.getChild(suffix)
        child._context = {**self._context, **context}
        return child

    def _emit(self, level: int, msg: str, args: tuple[object, ...], kwargs: dict[str, Any]) -> None:
        if self._context:
            kwargs["extra"] = {**self._context, **(kwargs.get("extra") or {})}
        # stacklevel 3 points funcName/lineno at the caller, not this wrapper.
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._emit(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._emit(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._emit(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._emit(logging.ERROR, msg, args, kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._emit(logging.CRITICAL, msg, args, kwargs)


def get_logger(name: str = "orthoscan") -> StructuredLogger:
    """Create and return a ``StructuredLogger`` with the given *name*."""
    return StructuredLogger(name=name)
