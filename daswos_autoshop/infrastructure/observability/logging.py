"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from daswos_autoshop.config import settings


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


def log_purchase(
    user_id: str,
    recommendation_id: str,
    product_id: str,
    amount: int,
    payment: str,
    session_id: str | None = None,
) -> None:
    """Log structured purchase outcome for analysis"""
    logging.info(
        "Autonomous purchase settled",
        extra={
            "user_id": user_id,
            "session_id": session_id,
            "recommendation_id": recommendation_id,
            "product_id": product_id,
            "step": "purchase_complete",
            "amount": amount,
            "payment": payment,
        },
    )


def log_cycle(user_id: str, session_id: str, outcome: str, duration_ms: float, detail: str | None = None) -> None:
    """Log one scheduler tick"""
    logging.info(
        "AutoShop cycle completed",
        extra={
            "user_id": user_id,
            "session_id": session_id,
            "step": "cycle_complete",
            "cycle_outcome": outcome,
            "detail": detail,
            "duration_ms": duration_ms,
        },
    )
