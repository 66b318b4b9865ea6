"""
Structured logging setup.

Modules log through ``logging.getLogger(__name__)`` and pass context
in ``extra``. This module only decides how records are rendered.
"""

import json
import logging
from datetime import UTC, datetime

# Keys modules pass through `extra` that should survive into JSON output
CONTEXT_KEYS = (
    "student_id",
    "item_id",
    "category",
    "cost",
    "balance",
    "failure_kind",
    "ledger_mode",
    "path",
)


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure the root logger. Safe to call more than once."""
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_rewardstore", False):
            root.removeHandler(existing)
    handler._rewardstore = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
