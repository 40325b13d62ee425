"""
Structured logging for the quote reconciliation engine.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional
from quote_reconciliation.config import get_config


config = get_config()


class StructuredFormatter(logging.Formatter):
    """Formats log records as structured JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "extra"):
            log_obj.update(record.extra)

        return json.dumps(log_obj, default=str)


def setup_logging(name: str = __name__) -> logging.Logger:
    """Setup and return a configured logger."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.LOG_LEVEL))

    # Modules call this at import time; attach handlers only once
    if logger.handlers:
        return logger

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, config.LOG_LEVEL))
    console_handler.setFormatter(logging.Formatter(config.LOG_FORMAT))
    logger.addHandler(console_handler)

    # File handler with structured JSON
    if config.LOG_FILE:
        file_handler = logging.FileHandler(config.LOG_FILE)
        file_handler.setLevel(getattr(logging, config.LOG_LEVEL))
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    return logger


def log_agent_action(
    logger: logging.Logger,
    component: str,
    action: str,
    details: Optional[dict] = None,
    confidence: Optional[float] = None,
) -> None:
    """Log a component action with context (ids and counts, never document contents)."""
    extra = {
        "component": component,
        "action": action,
    }
    if confidence is not None:
        extra["confidence"] = confidence
    if details:
        extra.update(details)

    logger.info(
        f"[{component}] {action}",
        extra={"extra": extra}
    )


def log_discrepancy(
    logger: logging.Logger,
    discrepancy_type: str,
    severity: str,
    explanation: str,
) -> None:
    """Log a detected discrepancy."""
    extra = {
        "type": "discrepancy",
        "discrepancy_type": discrepancy_type,
        "severity": severity,
        "explanation": explanation,
    }
    logger.info(
        f"Discrepancy detected: {discrepancy_type} ({severity})",
        extra={"extra": extra}
    )
