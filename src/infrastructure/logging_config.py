"""Structured logging configuration.

Field devices can ship JSON log lines off the device; interactive use gets a
plain human-readable format on stderr so it never mixes with command output.

Security Impact:
    - Extra fields named like secrets (keys, passwords) are masked
    - Core modules never pass keys or passwords in log messages
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

MASK = "***"

SENSITIVE_FIELDS = frozenset({"key", "password", "device_key", "generated_key", "encryption_key"})

# Record attributes copied into the JSON line when a caller sets them via extra=
CONTEXT_FIELDS = ("dataset", "status_code")

LOG_FILE_MAX_BYTES = 1_000_000
LOG_FILE_BACKUPS = 3


def _mask(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {name: (MASK if name.lower() in SENSITIVE_FIELDS else value) for name, value in fields.items()}


class StructuredFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if hasattr(record, "extra_fields"):
            log_data.update(_mask(record.extra_fields))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(use_json: bool = False, log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger once per process.

    Parameters:
        use_json: Emit JSON lines instead of the plain format
        log_level: Logging level name; unknown names fall back to INFO
        log_file: Also write to this file, rotated at about 1 MB
    """
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    if use_json:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS, encoding="utf-8"
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # HTTP transport chatter stays out of the application log
    logging.getLogger("urllib3").setLevel(logging.WARNING)
