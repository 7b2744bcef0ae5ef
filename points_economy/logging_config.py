"""
Structured Logging Configuration Module

Every line is one JSON object. Who acted, what they did, the record touched
and, for failures, the error kind are top-level keys so log queries can
filter on them; anything else goes under ``context``.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Record attributes promoted to top-level keys, in output order
STRUCTURED_FIELDS = ("actor_id", "action", "resource", "student_id", "new_balance", "error_kind")


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line"""

    def format(self, record):
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STRUCTURED_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        context = getattr(record, "context", None)
        if context:
            log_entry["context"] = context
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "points_economy",
                  log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a JSON handler to the application logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Name of the application logger
        log_file: Optional file path; stderr when omitted

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)

    # Re-running setup replaces the handler instead of stacking a second one
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "points_economy") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               actor_id: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, student_id: Optional[str] = None,
               new_balance: Optional[int] = None, error_kind: Optional[str] = None,
               context: Optional[Dict[str, Any]] = None):
    """
    Log a points-economy action.

    ``resource`` names the record acted upon as ``<type>:<id>``. A zero
    ``new_balance`` is still logged; empty ``context`` is dropped.
    """
    fields = {
        "actor_id": actor_id,
        "action": action,
        "resource": resource,
        "student_id": student_id,
        "new_balance": new_balance,
        "error_kind": error_kind,
        "context": context or None,
    }
    logger.log(getattr(logging, level.upper()), message,
               extra={key: value for key, value in fields.items() if value is not None})
