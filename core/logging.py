"""
Logging configuration

Log calls may pass `extra={"error_context": {...}}` (see SyncException.to_dict);
the formatter appends that context to the line so failed records and pages
can be traced from plain stdout logs.
"""

import logging
import sys
from typing import Optional
from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "httpx", "httpcore", "apscheduler")


class ErrorContextFormatter(logging.Formatter):
    """Appends `error_context` fields, if the record carries any."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = getattr(record, "error_context", None)
        if not context:
            return line
        fields = context.get("context", context) if isinstance(context, dict) else {}
        details = " ".join(f"{k}={v}" for k, v in fields.items() if k != "error_timestamp")
        return f"{line} [{details}]" if details else line


def setup_logging(level: Optional[str] = None):
    """Configure application logging. `level` overrides LOG_LEVEL."""
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ErrorContextFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Logging configured at {level_name} level")
