"""
Holdfast - session lifecycle and timing engine.

Tracks timed restriction sessions: start, pause, resume and end with
pause-excluded effective time, a pause cooldown, an emergency unlock
with its own cooldown, and duration goals fed by finished sessions.
"""

__version__ = "0.1.0"

from holdfast.exceptions import (
    AlreadyInStateError,
    ConfigError,
    ConflictError,
    CooldownError,
    HoldfastError,
    InvalidStateError,
    NotFoundError,
    OwnershipError,
    StateTransitionError,
    StorageError,
)

__all__ = [
    "__version__",
    "HoldfastError",
    "ConfigError",
    "StorageError",
    "NotFoundError",
    "InvalidStateError",
    "AlreadyInStateError",
    "StateTransitionError",
    "CooldownError",
    "ConflictError",
    "OwnershipError",
]
