# ============================================================================
# VERSION - HTTP SERVICE BACKBONE
# ============================================================================
"""
Version information for the HTTP service backbone.

This is the single source of truth for the application version.
Updated manually for each release.
"""
__version__ = "0.3.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata (overridden by CI through environment at image build time)
BUILD_DATE = "2026-10-17"
COMMIT = "unknown"

SERVICE_NAME = "http-backbone"
