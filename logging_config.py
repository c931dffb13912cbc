"""
Structured JSON logging.

Every log line is a single JSON object carrying the channel it was emitted on
(http, db, auth, portal) and the id of the request being served, so entries
from one request can be correlated in the container log stream.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

from config import LOG_LEVEL

# Set by the request middleware; empty outside of a request.
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

CHANNELS = ("http", "db", "auth", "portal")


class StructuredJsonFormatter(logging.Formatter):
    """Render a record as {timestamp, level, message, channel, context, extra}."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "message": record.getMessage(),
            "channel": getattr(record, "channel", record.name.split(".")[-1] if "." in record.name else "app"),
            "context": {
                "request_id": request_id_var.get(""),
                **(getattr(record, "context", {}) or {}),
            },
            "extra": getattr(record, "extra_data", {}) or {},
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging() -> logging.Logger:
    """Install the JSON formatter on the root logger and set channel levels."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())

    level = getattr(logging, LOG_LEVEL, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    for channel in CHANNELS:
        logging.getLogger(f"portal.{channel}").setLevel(level)

    return root_logger


def get_logger(channel: str) -> logging.Logger:
    return logging.getLogger(f"portal.{channel}")


def log_with_context(logger: logging.Logger, level: str, message: str,
                     context: dict = None, extra_data: dict = None, exc_info=None):
    """
    Emit a structured entry.

    Args:
        logger: channel logger from get_logger()
        level: level name (INFO, WARNING, ERROR, DEBUG)
        message: human-readable message
        context: business identifiers (user_id, student_id, message_id)
        extra_data: metadata such as duration_ms or status_code
        exc_info: forwarded to Logger.log
    """
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        message,
        exc_info=exc_info,
        extra={
            "context": context or {},
            "extra_data": extra_data or {},
            "channel": logger.name.split(".")[-1],
        },
    )


def generate_request_id() -> str:
    return str(uuid.uuid4())
