from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

# Structured `extra` keys copied into each log line
LOG_FIELDS = (
    "reference",
    "gateway",
    "event",
    "status",
    "order_id",
    "payment_id",
    "customer_id",
    "customer_email",
    "amount",
    "currency",
    "already_processed",
    "cause",
    "endpoint",
    "response_code",
    "latency_ms",
    "error",
)


def _coerce(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _coerce(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_coerce(item) for item in value]
    return value


class JsonFormatter(logging.Formatter):
    """One JSON object per record, carrying reconciliation context."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        data.update(
            {name: _coerce(getattr(record, name)) for name in LOG_FIELDS if hasattr(record, name)}
        )
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Install the JSON formatter on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=level, handlers=[handler])
