# ============================================================================
# HEALTH CHECK MODULE
# ============================================================================
# STATUS: Infrastructure - Health check aggregation
# PURPOSE: Kubernetes probes backed by an injected check registry
# ============================================================================
"""
Health Check Module

Check registry and probe endpoints:
- /livez: Liveness probe (aggregate of liveness checks)
- /healthz: Readiness probe (aggregate of readiness checks)
- /actuator/info: Build metadata (optional)

Architecture:
- HealthRegistry: check state per probe kind, aggregation under a deadline
- HealthCheck / FuncCheck: self-describing checks run on each aggregate
- build_probe_router: FastAPI router bound to one registry

Usage:
    from health import HealthRegistry, ProbeKind, build_probe_router

    registry = HealthRegistry()
    registry.set(ProbeKind.READINESS, "db", None)
    app.include_router(build_probe_router(registry, config))
"""

from health.core import (
    AggregateResult,
    CheckState,
    FuncCheck,
    HealthCheck,
    ProbeKind,
)
from health.registry import HealthRegistry
from health.router import BuildInfo, build_probe_router

__all__ = [
    # Core types
    "AggregateResult",
    "CheckState",
    "FuncCheck",
    "HealthCheck",
    "ProbeKind",
    # Registry
    "HealthRegistry",
    # Router
    "BuildInfo",
    "build_probe_router",
]
