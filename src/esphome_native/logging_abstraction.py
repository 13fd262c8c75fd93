"""Structured logging for the native API client.

Every module logs through an ``ApiLogger``. Keyword ``extra`` context (device,
peer, reason, ...) travels on the record as ``extra_data`` and is rendered by
one of two formatters:

* ``HumanReadableFormatter``: one line, short correlation id, ``| key=value`` tail
* ``JSONFormatter``: one JSON object per line, device hoisted to the top level

``ESPHOME_NATIVE_LOG_FORMAT`` selects ``human``, ``json`` or ``both``.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing_extensions import override

from esphome_native import const
from esphome_native.correlation import get_correlation_id

__all__ = [
    "ApiLogger",
    "HumanReadableFormatter",
    "JSONFormatter",
    "get_logger",
]

Context = Mapping[str, object]


def _record_context(record: logging.LogRecord) -> dict[str, object]:
    context = getattr(record, "extra_data", None)
    return dict(context) if isinstance(context, Mapping) else {}


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        context = _record_context(record)
        document: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        if "device" in context:
            document["device"] = context["device"]
        if context:
            document["context"] = context
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


class HumanReadableFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        record.correlation_id = f"[{correlation_id[:8]}]" if correlation_id else "[--------]"
        line = super().format(record)

        context = _record_context(record)
        if not context:
            return line
        return " | ".join([line, *(f"{key}={value}" for key, value in context.items())])


def _open_target(target: str | Path) -> logging.Handler:
    if target == "stdout":
        return logging.StreamHandler(sys.stdout)
    if target == "stderr":
        return logging.StreamHandler(sys.stderr)
    path = Path(target)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a")


class ApiLogger:
    """Thin wrapper over ``logging.Logger`` taking ``extra`` as plain keywords.

    Loggers are shared by name; handlers are attached only when the named
    logger has none yet.
    """

    def __init__(
        self,
        name: str,
        log_format: str = "human",
        json_file: str | Path | None = None,
        human_output: str | None = "stderr",
    ) -> None:
        """Create (or reuse) the named logger.

        Args:
            name: Logger name, usually ``__name__``
            log_format: "json", "human" or "both"
            json_file: JSON lines file; JSON output is skipped without one
            human_output: "stdout", "stderr" or a file path
        """
        self.name = name
        self.log_format = log_format
        self.logger = logging.getLogger(name)

        if self.logger.level == logging.NOTSET:
            self.logger.setLevel(logging.DEBUG if const.ESPHOME_NATIVE_DEBUG else logging.INFO)
        if not self.logger.handlers:
            self._attach_handlers(json_file, human_output or "stderr")

    def _attach(self, target: str | Path, formatter: logging.Formatter) -> None:
        try:
            handler = _open_target(target)
        except OSError as e:
            print(f"Warning: cannot open log output {target}: {e}", file=sys.stderr)
            if target in ("stdout", "stderr") or isinstance(formatter, JSONFormatter):
                return
            handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        handler.setLevel(self.logger.level)
        self.logger.addHandler(handler)

    def _attach_handlers(self, json_file: str | Path | None, human_output: str) -> None:
        if self.log_format in ("json", "both") and json_file:
            self._attach(json_file, JSONFormatter())
        if self.log_format in ("human", "both"):
            self._attach(human_output, HumanReadableFormatter())

    def _emit(self, level: int, msg: str, args: tuple[object, ...], extra: Context | None, **kwargs: object) -> None:
        wrapped = {"extra_data": dict(extra)} if extra else None
        self.logger.log(level, msg, *args, extra=wrapped, stacklevel=3, **kwargs)

    def debug(self, msg: str, *args: object, extra: Context | None = None) -> None:
        self._emit(logging.DEBUG, msg, args, extra)

    def info(self, msg: str, *args: object, extra: Context | None = None) -> None:
        self._emit(logging.INFO, msg, args, extra)

    def warning(self, msg: str, *args: object, extra: Context | None = None) -> None:
        self._emit(logging.WARNING, msg, args, extra)

    def error(self, msg: str, *args: object, extra: Context | None = None) -> None:
        self._emit(logging.ERROR, msg, args, extra)

    def exception(self, msg: str, *args: object, extra: Context | None = None) -> None:
        """ERROR record carrying the traceback of the exception being handled."""
        self._emit(logging.ERROR, msg, args, extra, exc_info=True)

    def is_enabled_for(self, level: int) -> bool:
        return self.logger.isEnabledFor(level)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)

    @property
    def handlers(self) -> list[logging.Handler]:
        return self.logger.handlers


def get_logger(
    name: str,
    log_format: str | None = None,
    json_file: str | Path | None = None,
    human_output: str | None = None,
) -> ApiLogger:
    """ApiLogger for ``name`` using the ``ESPHOME_NATIVE_LOG_*`` settings unless overridden."""
    return ApiLogger(
        name=name,
        log_format=log_format or const.ESPHOME_NATIVE_LOG_FORMAT,
        json_file=json_file or const.ESPHOME_NATIVE_LOG_JSON_FILE,
        human_output=human_output or const.ESPHOME_NATIVE_LOG_HUMAN_OUTPUT,
    )
