"""JSONL output for the lifecycle and emergency audit streams."""

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path


class AuditLineFormatter(logging.Formatter):
    """
    One JSON object per record.

    Audit entries arrive already serialised by ``to_json()`` and pass through
    untouched; any other message is wrapped so every line stays parseable.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        try:
            json.loads(message)
            return message
        except json.JSONDecodeError:
            return json.dumps(
                {
                    "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                    "level": record.levelname,
                    "logger": record.name,
                    "message": message,
                }
            )


def create_jsonl_logger(
    name: str,
    filepath: Path,
    level: str = "INFO",
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> logging.Logger:
    """Build a non-propagating logger appending JSON lines to a rotating file."""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Rebuilt after set_config(); drop the handler on the old path
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    handler = RotatingFileHandler(
        filepath, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(AuditLineFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
