"""
Logging setup for the curriculum service.

Output format and level come from config (``LOG_FORMAT`` = json | text,
``LOG_LEVEL``). Handlers are attached to the ``curriculum`` logger only;
records still propagate to the root logger.

Log calls carry request and audit context through ``extra``:

    logger.info("Mapping %s: %s -> %s", ..., extra={"tenant_id": ctx.tenant_id})

Both formatters pick up the keys listed in ``CONTEXT_FIELDS``.
"""

import json
import logging
import sys
from datetime import datetime, timezone

SERVICE_LOGGER = "curriculum"

# Set by timing.py, actor_context.py, common.py and audit_emitter.py.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "tenant_id",
    "actor_id",
    "entity_type",
    "entity_id",
    "event_type",
)


def record_context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        context = " ".join(f"{k}={v}" for k, v in record_context(record).items())
        line = f"{ts} {record.levelname:<8} {record.name}: {record.getMessage()}"
        if context:
            line = f"{line} [{context}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Attach a single stderr handler to the service logger."""
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    use_json = str(app.config.get("LOG_FORMAT", "text")).lower() == "json"

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else TextFormatter())

    service_logger = logging.getLogger(SERVICE_LOGGER)
    service_logger.handlers.clear()
    service_logger.addHandler(handler)
    service_logger.setLevel(level)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    app.logger.setLevel(level)
    return handler
