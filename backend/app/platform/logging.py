import json
import logging
import sys
from datetime import datetime, timezone

from ..platform.config import settings
from ..platform.request_context import get_request_id

# Structured fields callers may attach through ``extra=``.
_CONTEXT_FIELDS = ("user_id", "event_id", "event_type", "credit_id", "task_id")

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "stripe", "celery.app.trace")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, carrying the request id and any ledger context."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id
        payload.update(
            {name: getattr(record, name) for name in _CONTEXT_FIELDS if getattr(record, name, None) is not None}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def setup_logging():
    """Route all logging through a single stdout JSON handler."""
    level = logging.DEBUG if settings.DEPLOYMENT_ENV == "development" else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
