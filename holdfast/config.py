"""
Holdfast - Configuration Management

Handles loading config.json and environment variables.
Config is stored in ~/.config/holdfast/config.json
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from holdfast.exceptions import ConfigError

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "holdfast"
CONFIG_FILE = CONFIG_DIR / "config.json"
DEFAULT_DB_PATH = CONFIG_DIR / "holdfast.db"


@dataclass
class HoldfastConfig:
    """Main configuration container for Holdfast."""

    db_path: Path = field(default_factory=lambda: DEFAULT_DB_PATH)
    default_owner: str = "default"
    default_emergency_cooldown_hours: float = 24.0
    emergency_lookback_days: int = 7
    operation_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        # Expand ~ in path
        self.db_path = Path(self.db_path).expanduser()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "db_path": str(self.db_path),
            "default_owner": self.default_owner,
            "default_emergency_cooldown_hours": self.default_emergency_cooldown_hours,
            "emergency_lookback_days": self.emergency_lookback_days,
            "operation_timeout_seconds": self.operation_timeout_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HoldfastConfig":
        """
        Create HoldfastConfig from dictionary.

        Raises:
            ConfigError: If a value has the wrong type
        """
        defaults = cls()
        try:
            return cls(
                db_path=Path(data.get("db_path", defaults.db_path)),
                default_owner=str(data.get("default_owner", defaults.default_owner)),
                default_emergency_cooldown_hours=_number(
                    data, "default_emergency_cooldown_hours", defaults.default_emergency_cooldown_hours
                ),
                emergency_lookback_days=int(
                    _number(data, "emergency_lookback_days", defaults.emergency_lookback_days)
                ),
                operation_timeout_seconds=_number(
                    data, "operation_timeout_seconds", defaults.operation_timeout_seconds
                ),
            )
        except TypeError as e:
            raise ConfigError("Invalid value in config", {"error": str(e)}) from e


def _number(data: dict[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(
            f"Config field '{key}' must be a number",
            {"field": key, "value": value},
        )
    if value < 0:
        raise ConfigError(
            f"Config field '{key}' must not be negative",
            {"field": key, "value": value},
        )
    return float(value)


def ensure_config_dir() -> None:
    """Ensure configuration directory exists."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> HoldfastConfig:
    """
    Load configuration from file and environment.

    Args:
        path: Config file to read. Defaults to ~/.config/holdfast/config.json

    Returns:
        HoldfastConfig with all settings loaded

    Raises:
        ConfigError: If configuration is invalid
    """
    config_file = path or CONFIG_FILE
    config = HoldfastConfig()

    if config_file.exists():
        try:
            with open(config_file) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(
                f"Invalid JSON in {config_file}",
                {"error": str(e)},
            )

        if not isinstance(data, dict):
            raise ConfigError(
                f"Expected a JSON object in {config_file}",
                {"type": type(data).__name__},
            )
        config = HoldfastConfig.from_dict(data)

    # Environment overrides
    db_path = os.environ.get("HOLDFAST_DB_PATH")
    if db_path:
        config.db_path = Path(db_path).expanduser()
    owner = os.environ.get("HOLDFAST_OWNER")
    if owner:
        config.default_owner = owner

    return config


def save_config(config: HoldfastConfig, path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: HoldfastConfig to save
        path: Destination. Defaults to ~/.config/holdfast/config.json
    """
    config_file = path or CONFIG_FILE
    if path is None:
        ensure_config_dir()
    else:
        config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, "w") as f:
        json.dump(config.to_dict(), f, indent=2)
