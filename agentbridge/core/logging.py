from __future__ import annotations

import json
import logging as std_logging
import sys
from typing import Any, Dict, Optional

import structlog

SERVICE_NAME = "agentbridge"

# record attributes passed via extra= that belong in the JSON line
_EXTRA_KEYS = (
    "conversation_key",
    "issue_key",
    "event",
    "delivery",
    "connector",
    "reason",
    "status",
    "tool",
    "error",
)


class JsonFormatter(std_logging.Formatter):
    """One JSON object per record, carrying the agent's correlation fields."""

    def format(self, record: std_logging.LogRecord) -> str:
        line: Dict[str, Any] = {
            "ts": int(record.created * 1000),
            "service": SERVICE_NAME,
            "logger": record.name,
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        line.update(
            (key, getattr(record, key))
            for key in _EXTRA_KEYS
            if getattr(record, key, None) is not None
        )
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str, ensure_ascii=False)


def configure_logging(level: Optional[str] = None) -> None:
    """Route stdlib and structlog output through one JSON handler on stdout."""
    from agentbridge.core.config import settings

    level_name = (level or settings.log_level or "INFO").upper()
    stdout = std_logging.StreamHandler(sys.stdout)
    stdout.setFormatter(JsonFormatter())
    std_logging.basicConfig(
        level=getattr(std_logging, level_name, std_logging.INFO),
        handlers=[stdout],
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"], sort_keys=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
