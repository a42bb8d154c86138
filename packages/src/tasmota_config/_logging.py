"""Log formatting and root-logger setup for reconciliation runs.

Runs are usually scheduled (cron, systemd timers, CI) and their output
collected rather than read live, so two formats are offered:

- ``text``: one human-readable line per record.  Records carrying a
  ``device`` or ``setting`` get a ``[device/setting]`` tag so a
  mismatch line reads on its own.
- ``json``: one JSON object per line (NDJSON).

The reconciler attaches context with ``extra=``.  The attributes named
in :data:`CONTEXT_FIELDS` become top-level JSON keys, so an aggregator
can select every mismatch of one device without parsing messages.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from tasmota_config._settings import LoggingSettings

_BYTES_PER_MB = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s%(context)s: %(message)s"

CONTEXT_FIELDS: tuple[str, ...] = ("device", "setting", "expected", "actual")
"""LogRecord attributes copied into JSON output when set."""


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Return the context attributes of *record* that are not ``None``."""
    context: dict[str, Any] = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            context[name] = value
    return context


class TextFormatter(logging.Formatter):
    """Plain-text formatter that tags records with device and setting."""

    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        context = record_context(record)
        tag = "/".join(
            str(context[key]) for key in ("device", "setting") if key in context
        )
        record.context = f" [{tag}]" if tag else ""
        return super().format(record)


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Keys, in order: ``timestamp`` (UTC, ISO 8601), ``level``,
    ``logger``, ``message``, ``service``, ``version`` (only when
    non-empty), then any :data:`CONTEXT_FIELDS` present on the record.
    ``exception`` and ``stack_info`` follow when the record has them.

    Args:
        service: Application name included in every line.
        version: Application version, omitted when empty.
    """

    def __init__(self, *, service: str = "", version: str = "") -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }
        if self._version:
            entry["version"] = self._version
        entry.update(record_context(record))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def build_formatter(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> logging.Formatter:
    """Return the formatter selected by ``settings.format``."""
    if settings.format == "json":
        return JsonFormatter(service=service, version=version)
    return TextFormatter()


def _handlers(settings: LoggingSettings) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.file is not None:
        handlers.append(
            RotatingFileHandler(
                settings.file,
                maxBytes=settings.max_file_size_mb * _BYTES_PER_MB,
                backupCount=settings.backup_count,
                encoding="utf-8",
            )
        )
    return handlers


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Replace the root logger's handlers according to *settings*.

    Installs a ``stderr`` handler and, when ``settings.file`` is set, a
    :class:`~logging.handlers.RotatingFileHandler`.  Both share one
    formatter.  Previously installed root handlers are removed but not
    closed.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    formatter = build_formatter(settings, service=service, version=version)
    for handler in _handlers(settings):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(settings.level)
