"""
JSON logs for the API, the Celery worker and the operator scripts.
Event names are snake_case messages; context goes into extra={...}.
"""
import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from creditledger.core.config import settings

# Keys picked up from record extras, in output order.
LEDGER_FIELDS = ("account_id", "transaction_id", "payment_hash", "job_id", "amount", "balance", "reason")
POLLER_FIELDS = ("state", "old_state", "new_state", "attempt", "max_attempts", "delay_seconds")
CONTEXT_FIELDS = (
    "error",
    "status_code",
    "breaker_name",
    "invalid_count",
    "verified_count",
    "recovered_count",
    "rewatched_count",
    "request_id",
    "path",
    "method",
)

# Per-request chatter from client libraries.
QUIET_LOGGERS = ("httpx", "httpcore", "urllib3")


class JsonFormatter(logging.Formatter):
    extra_fields = LEDGER_FIELDS + POLLER_FIELDS + CONTEXT_FIELDS

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key in self.extra_fields:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str | None = None) -> None:
    """Replace root handlers with JSON stdout (+ rotating file when LOG_FILE is set)."""
    formatter = JsonFormatter()
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    handlers: list[logging.Handler] = [stream]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    root.handlers = handlers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
