"""
Structured Logging Configuration Module

Every service logger writes one JSON object per line. Transfer, search and
login events add who acted (``user_id``), what they did (``action``), the
object involved (``resource``) and free-form ``extra`` details.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

CONTEXT_FIELDS = ("user_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """Render a log record as a single-line JSON document"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str = "INFO", log_format: str = "json",
                  logger_name: str = "funds_transfer") -> logging.Logger:
    """
    Configure the service logger tree.

    Args:
        level: Threshold name such as DEBUG or WARNING
        log_format: "json" for structured output, "text" for plain lines
        logger_name: Root of the logger tree to configure

    Returns:
        The configured logger
    """
    service_logger = logging.getLogger(logger_name)

    # Calling twice (app factory in tests) must not stack handlers
    for existing in list(service_logger.handlers):
        service_logger.removeHandler(existing)

    stream = logging.StreamHandler()
    stream.setFormatter(
        logging.Formatter(TEXT_FORMAT) if log_format == "text" else JSONFormatter()
    )

    service_logger.addHandler(stream)
    service_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    service_logger.propagate = False

    return service_logger


def get_logger(name: str = "funds_transfer") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """
    Emit ``message`` with the structured context fields attached.

    Args:
        logger: Logger to write to
        level: Lower-case level name, e.g. "info" or "warning"
        message: Human readable summary
        user_id: Username of the caller
        action: Short action name such as "transfer"
        resource: Affected object, e.g. "account:<id>"
        extra: Additional structured data
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    context = {"user_id": user_id, "action": action, "resource": resource, "extra": extra}
    record = logger.makeRecord(logger.name, levelno, __name__, 0, message, (), None)
    for name, value in context.items():
        if value:
            setattr(record, name, value)

    logger.handle(record)
