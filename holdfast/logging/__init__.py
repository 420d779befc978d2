"""
Holdfast Logging System.

Provides structured JSONL logging for:
- Session lifecycle transitions (start, pause, resume, end)
- Emergency unlock attempts, successful or not

Usage:
    from holdfast.logging import lifecycle_logger, LifecycleLogEntry, now_iso

    lifecycle_logger.info(
        LifecycleLogEntry(
            timestamp=now_iso(),
            owner_id="alice",
            session_id=session.id,
            event_type="pause",
        ).to_json()
    )

Logs are written to ~/.holdfast/logs/:
    - lifecycle.jsonl: Session lifecycle events
    - emergency.jsonl: Emergency unlock attempts
"""

import threading
from typing import Any

from .config import LogConfig, get_config
from .config import set_config as _set_config
from .entries import EmergencyLogEntry, LifecycleLogEntry, now_iso
from .handlers import create_jsonl_logger

# Lazy-initialized loggers to avoid creating files before needed
_lifecycle_logger: Any = None
_emergency_logger: Any = None
_init_lock = threading.Lock()


def _ensure_loggers() -> None:
    """Initialize loggers on first use."""
    global _lifecycle_logger, _emergency_logger

    if _lifecycle_logger is not None:
        return

    with _init_lock:
        # Double-check after acquiring lock
        if _lifecycle_logger is not None:
            return

        config = get_config()

        _emergency_logger = create_jsonl_logger(
            "holdfast.audit.emergency",
            config.emergency_log_path,
            level=config.emergency_level,
            max_bytes=config.max_file_size_bytes,
            backup_count=config.backup_count,
        )

        _lifecycle_logger = create_jsonl_logger(
            "holdfast.audit.lifecycle",
            config.lifecycle_log_path,
            level=config.lifecycle_level,
            max_bytes=config.max_file_size_bytes,
            backup_count=config.backup_count,
        )


def set_config(config: LogConfig) -> None:
    """Replace the log config; loggers are rebuilt on next use."""
    global _lifecycle_logger, _emergency_logger

    with _init_lock:
        _set_config(config)
        _lifecycle_logger = None
        _emergency_logger = None


class _LazyLogger:
    """Lazy wrapper that initializes the actual logger on first use."""

    def __init__(self, name: str):
        self._name = name

    def _get_logger(self) -> Any:
        _ensure_loggers()
        if self._name == "emergency":
            return _emergency_logger
        return _lifecycle_logger

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().error(msg, *args, **kwargs)


# Public logger instances
lifecycle_logger = _LazyLogger("lifecycle")
emergency_logger = _LazyLogger("emergency")


__all__ = [
    # Loggers
    "lifecycle_logger",
    "emergency_logger",
    # Log entries
    "LifecycleLogEntry",
    "EmergencyLogEntry",
    # Utilities
    "now_iso",
    # Config
    "LogConfig",
    "get_config",
    "set_config",
]
