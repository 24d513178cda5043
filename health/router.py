# ============================================================================
# HEALTH CHECK ROUTER
# ============================================================================
# STATUS: Infrastructure - FastAPI probe endpoints
# PURPOSE: Kubernetes liveness/readiness probes and build info
# ============================================================================
"""
Health Check Router

FastAPI router exposing the orchestrator probes under the configured base
path:

Endpoints (default paths):
    GET /healthz         - Readiness probe. 200 if every readiness check
                           holds no error, 503 otherwise.
    GET /livez           - Liveness probe. Same contract for liveness checks.
    GET /actuator/info   - Build metadata. Registered only when build info
                           was supplied.

Probe bodies are the aggregate result: {"ok": bool, "details": {name: status}}.

These paths are also injected as default skip rules, so probe polling never
reaches the access log, metrics or tracing.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from core.config import HttpConfig
from health.core import ProbeKind
from health.registry import HealthRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildInfo:
    """Build metadata served on the info endpoint."""
    version: str
    commit: str = ""
    built_at: str = ""

    def to_dict(self):
        return {"version": self.version, "commit": self.commit, "builtAt": self.built_at}


def join_path(base_path: str, path: str) -> str:
    """Join a base path and a route path with exactly one slash between them."""
    base = (base_path or "").rstrip("/")
    return f"{base}/{path.lstrip('/')}"


def build_probe_router(
    registry: HealthRegistry,
    config: HttpConfig,
    build_info: Optional[BuildInfo] = None,
) -> APIRouter:
    """
    Build the probe router.

    Args:
        registry: Health registry to aggregate
        config: HTTP config (base path, probe paths, probe timeout)
        build_info: Enables the info endpoint when given

    Returns:
        APIRouter ready for ``app.include_router``
    """
    health = config.health
    timeout = health.timeout
    router = APIRouter(prefix=(config.base_path or "").rstrip("/"), tags=["Health"])

    async def _probe(kind: ProbeKind) -> JSONResponse:
        result = await registry.aggregate(kind, timeout=timeout)
        status_code = 200 if result.ok else 503
        return JSONResponse(status_code=status_code, content=result.to_dict())

    # ------------------------------------------------------------------------
    # READINESS PROBE
    # ------------------------------------------------------------------------

    @router.get(join_path("", health.readiness_path), include_in_schema=False)
    async def readiness_probe():
        """
        Readiness probe.

        If this fails, Kubernetes removes the pod from the service load
        balancer.
        """
        return await _probe(ProbeKind.READINESS)

    # ------------------------------------------------------------------------
    # LIVENESS PROBE
    # ------------------------------------------------------------------------

    @router.get(join_path("", health.liveness_path), include_in_schema=False)
    async def liveness_probe():
        """
        Liveness probe.

        If this fails, Kubernetes restarts the container.
        """
        return await _probe(ProbeKind.LIVENESS)

    # ------------------------------------------------------------------------
    # BUILD INFO
    # ------------------------------------------------------------------------

    if build_info is not None:
        @router.get(join_path("", health.info_path), include_in_schema=False)
        async def build_info_endpoint():
            return build_info.to_dict()

    logger.debug(
        f"Probe routes: readiness={join_path(config.base_path, health.readiness_path)}, "
        f"liveness={join_path(config.base_path, health.liveness_path)}, "
        f"info={'on' if build_info else 'off'}"
    )
    return router


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "BuildInfo",
    "build_probe_router",
    "join_path",
]
