"""
Structured Logging Configuration Module

JSON log lines for ledger operations. Each line names the collector or
operator (user_id), the action and the resource it touched, e.g.
"loan:<id>" or "repayment:<id>".
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional

# Record attributes copied into every JSON line when set
CONTEXT_FIELDS = ("user_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """One JSON object per log record"""

    def format(self, record):
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "microfinance",
                  log_format: str = "json", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the engine's root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Logger to configure; child loggers inherit it
        log_format: "json" for structured output, anything else for plain text
        log_file: Optional file path; stderr when omitted

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Reconfiguring replaces earlier handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False
    return logger


def get_logger(name: str = "microfinance") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               user_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log a ledger action with its context fields.

    Args:
        logger: Logger instance
        level: Log level name (info, warning, error, ...)
        message: Log message
        user_id: Collector or operator performing the action
        action: Operation name, e.g. "record_repayment"
        resource: Resource acted upon, e.g. "loan:<id>"
        extra: Additional structured data
    """
    context = {
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "extra": extra
    }
    logger.log(getattr(logging, level.upper()), message,
               extra={k: v for k, v in context.items() if v})
