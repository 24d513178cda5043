# ============================================================================
# SERVER MODULE
# ============================================================================
# STATUS: Server - HTTP listener lifecycle
# PURPOSE: Startup, background serving and bounded graceful shutdown
# ============================================================================
"""
Server Module

Usage:
    from server import ServerLifecycle

    lifecycle = ServerLifecycle(app, config, registry, pipeline=pipeline)
    await lifecycle.run()
"""

from server.lifecycle import LIVENESS_CHECK, ServerLifecycle, ServerState, bind_socket

__all__ = [
    "LIVENESS_CHECK",
    "ServerLifecycle",
    "ServerState",
    "bind_socket",
]
