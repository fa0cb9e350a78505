"""Log formatting, handler setup and device-scoped loggers.

Every message about a television must say which television it is
about.  :class:`DeviceLogger` prefixes messages with the device address
and attaches it to the record as ``device``; :class:`JsonFormatter`
emits that field so log aggregators can filter per TV.

JSON output is one object per line (NDJSON) with ``timestamp``,
``level``, ``logger``, ``message``, ``service``, ``version`` and, for
device records, ``device``.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from androidtv2mqtt._settings import LoggingSettings

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class DeviceLogger(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger adapter bound to one device address.

    Usage::

        log = DeviceLogger(logging.getLogger(__name__), "10.0.0.2")
        log.warning("power query failed: %s", exc)
        # -> "10.0.0.2 - power query failed: ..."
    """

    def __init__(self, logger: logging.Logger, address: str) -> None:
        super().__init__(logger, {"device": address})
        self.address = address

    def process(
        self,
        msg: Any,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("device", self.address)
        kwargs["extra"] = extra
        return f"{self.address} - {msg}", kwargs


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Timestamps are always UTC (ISO 8601).  ``version`` is omitted when
    empty; ``device``, ``exception`` and ``stack_info`` only appear when
    the record carries them.

    Args:
        service: Application name included in every log line.
        version: Application version string.
    """

    def __init__(
        self,
        *,
        service: str = "",
        version: str = "",
    ) -> None:
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

        device = getattr(record, "device", None)
        if device is not None:
            entry["device"] = device

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Configure the root logger from settings.

    Replaces any existing root handlers with a stderr stream handler
    and, when ``settings.file`` is set, a size-rotated file handler.

    Args:
        settings: Logging configuration (level, format, file).
        service: Application name for :class:`JsonFormatter`.
        version: Application version for :class:`JsonFormatter`.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if settings.format == "json":
        formatter: logging.Formatter = JsonFormatter(service=service, version=version)
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if settings.file is not None:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(settings.level)
