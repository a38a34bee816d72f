"""
Structured logging.

Loggers take context as keyword arguments:

    logger = get_logger(__name__)
    logger.info("Refund issued", order_id=12, amount="28.74")

Production writes one JSON object per line; other environments write a
compact human-readable line. The request correlation id is attached to
every record, and fields that look like credentials are redacted.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings

REDACTED = "[redacted]"
SENSITIVE_FIELD_PARTS = ("password", "secret", "token", "authorization", "api_key", "card_number")

NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "stripe": logging.WARNING,
}


def redact(fields: dict[str, Any]) -> dict[str, Any]:
    return {
        key: REDACTED if any(part in key.lower() for part in SENSITIVE_FIELD_PARTS) else value
        for key, value in fields.items()
    }


class StructuredLogger(logging.Logger):
    """Logger whose extra keyword arguments become the record's `fields`."""

    def _log(
        self,
        level,
        msg,
        args,
        exc_info=None,
        extra=None,
        stack_info=False,
        stacklevel=1,
        **fields: Any,
    ):
        extra = dict(extra or {})
        extra["fields"] = redact(fields)
        super()._log(
            level, msg, args,
            exc_info=exc_info, extra=extra, stack_info=stack_info, stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


class JsonFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            entry["request_id"] = request_id
        entry.update(getattr(record, "fields", None) or {})
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        when = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        request_id = getattr(record, "request_id", "-")
        line = f"{when} {record.levelname:<7} [{request_id[:8]}] {record.name}: {record.getMessage()}"
        fields = getattr(record, "fields", None)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging() -> None:
    """Install the stdout handler on the root logger. Safe to call twice."""
    from shared.infrastructure.correlation import CorrelationIdFilter

    level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(JsonFormatter() if settings.environment == "production" else ConsoleFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def mask_email(email: str | None) -> str:
    """"camille@client.ca" -> "ca***@client.ca"."""
    if not email or "@" not in email:
        return "<no-email>" if not email else "***@invalid"
    local, domain = email.split("@", 1)
    return f"{local[:2] if len(local) > 2 else local[:1]}***@{domain}"


rest_api_logger = get_logger("rest_api")
auth_logger = get_logger("rest_api.auth")
