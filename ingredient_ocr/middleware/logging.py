"""
Logging setup: JSON lines for production, plain text for development.
"""

import json
import logging
from datetime import datetime, timezone

from .. import config

_EXTRA_KEYS = ("error_code", "language_key", "attempt", "circuit_state", "line_index")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


def setup_logging(level: str = config.LOG_LEVEL, fmt: str = config.LOG_FORMAT) -> logging.Handler:
    """Install one root handler. Safe to call more than once."""
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, "_ingredient_ocr", False):
            root.removeHandler(h)

    handler = logging.StreamHandler()
    handler._ingredient_ocr = True  # type: ignore[attr-defined]
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
        ))
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler
