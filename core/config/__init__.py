# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# ============================================================================
"""
Configuration Module

Provides typed configuration for the HTTP backbone.
"""

from core.config.defaults import (
    DisabledURL,
    HealthConfig,
    HttpConfig,
    LoggingConfig,
    RequestConfig,
    parse_duration,
)
from core.config.sanitize import sanitize

__all__ = [
    "DisabledURL",
    "HealthConfig",
    "HttpConfig",
    "LoggingConfig",
    "RequestConfig",
    "parse_duration",
    "sanitize",
]
