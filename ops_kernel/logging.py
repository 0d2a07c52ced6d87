"""
Logging setup for the kernel.

Standard library logging with two formatters: a compact human-readable
one for development and a JSON one for production log shipping.
Structured fields are passed through `extra` and rendered by both.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from ops_kernel.settings import Settings, get_settings

# LogRecord attributes that are not user-supplied structured fields
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _structured_fields(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED}


class StructuredFormatter(logging.Formatter):
    """JSON formatter, one object per line."""

    def __init__(self, include_source: bool = False):
        super().__init__()
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        fields = _structured_fields(record)
        if fields:
            log_data["data"] = fields

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_source:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for local runs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%H:%M:%S")
        message = (
            f"{color}[{timestamp}] {record.levelname:8}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )

        fields = _structured_fields(record)
        if fields:
            message += " (" + " | ".join(f"{k}={v}" for k, v in fields.items()) + ")"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


def setup_logging(settings: Optional[Settings] = None) -> None:
    """Configure the root logger. Call once at process startup."""
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else getattr(
        logging, settings.log_level.upper(), logging.INFO
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if settings.environment == "production":
        handler.setFormatter(StructuredFormatter(include_source=settings.debug))
    else:
        handler.setFormatter(DevelopmentFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a kernel module.

    Usage:
        logger = get_logger(__name__)
        logger.warning("Poll failed", extra={"tenant_id": tenant_id})
    """
    return logging.getLogger(name)


def mask_email(email: Optional[str]) -> str:
    """
    Mask an email address before it reaches the logs.

    "user@example.com" becomes "us***@example.com".
    """
    if not email:
        return "<no-email>"
    try:
        local, domain = email.split("@", 1)
    except ValueError:
        return "***@invalid"
    masked_local = (local[0] if len(local) <= 2 else local[:2]) + "***"
    return f"{masked_local}@{domain}"
