# ============================================================================
# CORE MODULE
# ============================================================================
# STATUS: Core module initialization
# PURPOSE: Export errors, configuration and observability capabilities
# ============================================================================

from core.errors import (
    BackboneError,
    ConfigurationError,
    CursorDecodeError,
    LifecycleError,
    ServerStartError,
)
from core.config import HttpConfig

__all__ = [
    # Errors
    "BackboneError",
    "ConfigurationError",
    "CursorDecodeError",
    "LifecycleError",
    "ServerStartError",
    # Config
    "HttpConfig",
]
