"""Centralized logging configuration.

Gateway code passes request context through `extra=`:

    logger.info("Request %s served", rid, extra={"request_id": rid, "provider": "ollama"})

RequestContextFilter guarantees those attributes exist on every record, so
the plain-text format can reference them and JSON output only carries the
ones that were actually set.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from counselflow.core.config import settings

CONTEXT_FIELDS = ("request_id", "user_id", "provider")
_UNSET = "-"

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | req=%(request_id)s | %(message)s"


class RequestContextFilter(logging.Filter):
    """Fill missing request context attributes with a placeholder."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, _UNSET)
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, _UNSET)
            if value != _UNSET:
                log_data[name] = value
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Configure logging for the entire application.

    Args:
        level: Overrides LOG_LEVEL
        json_output: Overrides LOG_JSON
    """
    level_no = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    use_json = settings.log_json if json_output is None else json_output

    root = logging.getLogger()
    root.setLevel(level_no)

    # Remove existing handlers
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level_no)
    handler.addFilter(RequestContextFilter())
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root.addHandler(handler)

    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING if not settings.app_debug else level_no)
