"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping
from pythonjsonlogger import jsonlogger

from lending_insights.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_query_execution(
    query_name: str,
    params: Mapping[str, Any],
    outcome: str,
    row_count: int,
    duration_ms: float,
) -> None:
    """Log structured execution outcome for analysis"""
    logging.info(
        "Query executed",
        extra={
            "query_name": query_name,
            "params": {k: str(v) for k, v in params.items()},
            "step": "query_complete",
            "outcome": outcome,
            "row_count": row_count,
            "duration_ms": duration_ms,
        },
    )
