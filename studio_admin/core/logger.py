"""
Structured logging with correlation ids and a dedicated audit channel.
"""
import json
import logging
import sys
from typing import Any, Dict, Optional

from studio_admin.core.config import settings


class CorrelationFilter(logging.Filter):
    """Guarantees every record carries a correlation_id attribute."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


def _build_logger(name: str) -> logging.Logger:
    log = logging.getLogger(name)
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(correlation_id)s | %(message)s"
        ))
        handler.addFilter(CorrelationFilter())
        log.addHandler(handler)
    log.setLevel(settings.LOG_LEVEL.upper())
    log.propagate = False
    return log


logger = _build_logger("studio_admin")
audit_logger = _build_logger("studio_admin.audit")


def get_logger_with_correlation(correlation_id: Optional[str]) -> logging.LoggerAdapter:
    """Returns an adapter that stamps every line with the request correlation id."""
    return logging.LoggerAdapter(logger, {"correlation_id": correlation_id or "-"})


def audit_log(action: str, user: str, resource: str, details: Optional[Dict[str, Any]] = None) -> None:
    """
    Writes one audit line per business action.
    Details are serialized as JSON so they can be shipped to a log index as-is.
    """
    payload = {
        "action": action,
        "user": user,
        "resource": resource,
        "details": details or {},
    }
    correlation_id = (details or {}).get("correlation_id", "-")
    audit_logger.info(
        json.dumps(payload, default=str, ensure_ascii=False),
        extra={"correlation_id": correlation_id}
    )
