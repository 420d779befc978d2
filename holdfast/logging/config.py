"""
Logging Configuration for Holdfast.

Defines paths, rotation settings and log levels for the JSONL audit streams.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class LogConfig:
    """Configuration for the Holdfast logging system."""

    # Paths
    log_dir: Path = field(default_factory=lambda: Path.home() / ".holdfast" / "logs")

    # File settings
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    # Log levels: DEBUG, INFO, WARNING, ERROR
    lifecycle_level: str = "INFO"
    emergency_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "LogConfig":
        """Load config from environment variables with defaults."""
        config = cls()

        if level := os.environ.get("HOLDFAST_LOG_LEVEL"):
            config.lifecycle_level = level
            config.emergency_level = level

        if log_dir := os.environ.get("HOLDFAST_LOG_DIR"):
            config.log_dir = Path(log_dir)

        # Max file size in MB
        if max_size := os.environ.get("HOLDFAST_LOG_MAX_SIZE_MB"):
            try:
                config.max_file_size_bytes = int(max_size) * 1024 * 1024
            except ValueError:
                pass

        return config

    def ensure_log_dir(self) -> None:
        """Create log directory if it doesn't exist."""
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def lifecycle_log_path(self) -> Path:
        """Path to session lifecycle log."""
        return self.log_dir / "lifecycle.jsonl"

    @property
    def emergency_log_path(self) -> Path:
        """Path to emergency unlock log."""
        return self.log_dir / "emergency.jsonl"


# Global config instance - initialized on first use
_config: LogConfig | None = None


def get_config() -> LogConfig:
    """Get the global log config, initializing from env if needed."""
    global _config
    if _config is None:
        _config = LogConfig.from_env()
        _config.ensure_log_dir()
    return _config


def set_config(config: LogConfig) -> None:
    """Set a custom log config (useful for testing)."""
    global _config
    _config = config
    _config.ensure_log_dir()
