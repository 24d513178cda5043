# ============================================================================
# ERRORS
# ============================================================================
# STATUS: Core - Exception taxonomy
# PURPOSE: Configuration, decode and lifecycle failures
# ============================================================================
"""
Exception taxonomy for the HTTP backbone.

- ConfigurationError: fatal at startup (bad regex, malformed skip rule)
- CursorDecodeError: malformed pagination cursor supplied by a client
- ServerStartError: listener could not be bound
- LifecycleError: illegal server state transition

Per-request handler faults are ordinary exceptions; the recovery middleware
turns them into 500 envelopes.
"""

from typing import Any


class BackboneError(Exception):
    """Base exception for backbone errors."""
    pass


class ConfigurationError(BackboneError):
    """Raised when configuration is invalid. Never raised per request."""

    def __init__(self, message: str, field: str = None, value: Any = None):
        self.field = field
        self.value = value
        super().__init__(message)


class CursorDecodeError(BackboneError, ValueError):
    """Raised when a pagination cursor cannot be decoded."""

    def __init__(self, cursor: str, reason: str):
        self.cursor = cursor
        self.reason = reason
        super().__init__(f"Invalid cursor: {reason}")


class ServerStartError(BackboneError):
    """Raised when the HTTP listener cannot be bound."""

    def __init__(self, addr: str, cause: Exception):
        self.addr = addr
        self.cause = cause
        super().__init__(f"Failed to bind {addr}: {cause}")


class LifecycleError(BackboneError):
    """Raised on an illegal server state transition."""
    pass


__all__ = [
    "BackboneError",
    "ConfigurationError",
    "CursorDecodeError",
    "ServerStartError",
    "LifecycleError",
]
