"""JSON log lines carrying the request correlation id.

Only whitelisted ``extra`` keys reach the output, so callers can attach
context without leaking payloads.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from teamspace.context import get_correlation_id


LOG_FIELDS = frozenset(
    {
        "method",
        "path",
        "status_code",
        "duration_ms",
        "backend",
        "collection",
        "verb",
        "channel",
        "entity_id",
        "actor_id",
        "remote_available",
        "error",
    }
)
ERROR_PREVIEW_CHARS = 500

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({})))
_base_record_factory = logging.getLogRecordFactory()
_handler: logging.Handler | None = None


def _stamp_correlation_id(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _base_record_factory(*args, **kwargs)
    if getattr(record, "correlation_id", None) is None:
        record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def __init__(self, service: str | None = None, fields: frozenset[str] = LOG_FIELDS) -> None:
        super().__init__()
        self.service = service
        self.fields = fields

    def format(self, record: logging.LogRecord) -> str:
        extras = {
            key: value
            for key, value in vars(record).items()
            if key in self.fields and key not in _STANDARD_ATTRS
        }
        error = extras.get("error")
        if isinstance(error, str) and len(error) > ERROR_PREVIEW_CHARS:
            extras["error"] = error[:ERROR_PREVIEW_CHARS]
        if record.exc_info:
            extras["exception"] = self.formatException(record.exc_info)

        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": extras,
        }
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", service: str | None = None) -> logging.Handler:
    """Install the stdout JSON handler once; later calls only adjust the level."""
    global _handler

    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    if _handler is None:
        logging.setLogRecordFactory(_stamp_correlation_id)
        _handler = logging.StreamHandler(stream=sys.stdout)
        _handler.setFormatter(JsonLogFormatter(service))
        root.addHandler(_handler)
    root.setLevel(resolved)
    return _handler
