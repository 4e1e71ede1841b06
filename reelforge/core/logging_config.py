"""
Logging Setup
=============

Plain-text or one-JSON-object-per-line logging for the CLI and HTTP server.

Modules log through ``logging.getLogger(__name__)``; pipeline code attaches
``project_id``, ``scene_id`` and ``chunk_index`` as ``extra`` fields which the
structured formatter lifts into the JSON record.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from .security import redact_api_key

CONTEXT_FIELDS = ("project_id", "scene_id", "chunk_index", "job_id", "provider", "asset_kind")

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class StructuredFormatter(logging.Formatter):
    """Formats log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_api_key(record.getMessage()),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info:
            log_entry["exception"] = redact_api_key(self.formatException(record.exc_info))

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", structured: bool = False, stream: Optional[object] = None) -> None:
    """Configure the root logger once for an entry point."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter() if structured else logging.Formatter(TEXT_FORMAT))
    root_logger.addHandler(handler)

    # Keep transport chatter out of pipeline logs
    for noisy in ("httpx", "httpcore", "botocore", "boto3", "urllib3", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
