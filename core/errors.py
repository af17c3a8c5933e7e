"""Exception hierarchy for the ABX selector.

Construction errors (ConfigurationError, ResourceExhausted) are raised
synchronously from ``add_source``. LinkFailure and engine-reported errors
happen on engine threads and reach the caller through the termination
watcher. Selection and progress errors are recoverable.
"""

from typing import Any, Dict, Optional


class AbxError(Exception):
    """Base class for every error raised by the selector."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({extra})"


class ConfigurationError(AbxError):
    """A stage could not be created or configured (bad path, bad setting)."""


class ResourceExhausted(AbxError):
    """The mixer cannot allocate another input."""


class LinkFailure(AbxError):
    """A discovered stream could not be linked to its mixer input."""


class SelectionError(AbxError):
    """Base class for recoverable selection errors."""


class IndexOutOfRange(SelectionError, IndexError):
    """``select`` was given an index outside ``[0, len)``."""


class EmptyRegistry(SelectionError):
    """``next`` was called on a registry with no sources."""


class NotReady(AbxError):
    """Position or duration is not known yet."""


class EngineError(AbxError):
    """The media engine rejected a state transition or failed at runtime."""
