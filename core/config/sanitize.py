# ============================================================================
# CONFIGURATION SANITIZER
# ============================================================================
# STATUS: Core - Secret redaction for config dumps
# PURPOSE: Safe diagnostic output of raw configuration mappings
# ============================================================================
"""
Redacts values whose keys look like secrets before a config mapping is
logged or exposed on a diagnostics endpoint.
"""

from typing import Any, Dict, Mapping

REDACTED = "[redacted]"

# Substring checks; conservative on purpose
SECRET_MARKERS = (
    "password", "passwd", "secret", "token", "key",
    "private", "pem", "hmac", "api_key", "apikey",
)


def is_secret_key(key: str) -> bool:
    """Check if a config key names a secret."""
    lowered = key.lower()
    return any(marker in lowered for marker in SECRET_MARKERS)


def sanitize(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of config with secret-looking values redacted (recursive)."""
    out: Dict[str, Any] = {}
    for key, value in config.items():
        if isinstance(value, Mapping):
            out[key] = sanitize(value)
        elif is_secret_key(str(key)):
            out[key] = REDACTED
        else:
            out[key] = value
    return out


__all__ = ["REDACTED", "is_secret_key", "sanitize"]
