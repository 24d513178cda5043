# ============================================================================
# HTTP SERVICE BACKBONE - MAIN APPLICATION
# ============================================================================
# STATUS: Core - FastAPI application entry point
# PURPOSE: Wire config, health registry, middleware pipeline and server
# ============================================================================
"""
HTTP Service Backbone Main Application

Builds a FastAPI application with:
1. The middleware pipeline (recovery, request id, logging, metrics, tracing)
2. Liveness/readiness probes backed by a health registry
3. Enveloped responses

Usage:
    python main.py

Environment:
    HTTP_ADDR, HTTP_BASE_PATH, HTTP_CONFIG_FILE, ...  (see core.config)
    LOG_LEVEL, LOG_FORMAT=json
    ENABLE_METRICS, ENABLE_TRACING, OTEL_SERVICE_NAME
"""

import asyncio
import os
from typing import Optional

from fastapi import FastAPI, Request

from __version__ import __version__, BUILD_DATE, COMMIT, SERVICE_NAME
from core.config import HttpConfig, sanitize
from core.logging import configure_logging, get_logger
from core.observability import Metrics, ObservabilityConfig, Tracer, build_capabilities
from health import BuildInfo, HealthRegistry
from middleware import MiddlewarePipeline, new_skipper
from responses import ok
from server import ServerLifecycle

logger = get_logger(__name__)


def create_app() -> FastAPI:
    """Create the FastAPI application with the service's own routes."""
    app = FastAPI(
        title="HTTP Service Backbone",
        description="Middleware pipeline, health probes and response envelopes",
        version=__version__,
    )

    @app.get("/")
    async def root(request: Request):
        """Root endpoint."""
        return ok(request, {
            "service": SERVICE_NAME,
            "version": __version__,
            "build_date": BUILD_DATE,
            "status": "running",
        })

    return app


def create_server(
    config: Optional[HttpConfig] = None,
    registry: Optional[HealthRegistry] = None,
    metrics: Optional[Metrics] = None,
    tracer: Optional[Tracer] = None,
    app: Optional[FastAPI] = None,
) -> ServerLifecycle:
    """
    Wire an application into a ServerLifecycle.

    Raises:
        ConfigurationError: if a skip rule does not compile
    """
    config = config or HttpConfig()
    server_version = config.server_version or __version__
    pipeline = MiddlewarePipeline(
        skipper=new_skipper(config),
        metrics=metrics,
        tracer=tracer,
        server_version=server_version,
    )
    return ServerLifecycle(
        app if app is not None else create_app(),
        config=config,
        registry=registry if registry is not None else HealthRegistry(),
        pipeline=pipeline,
        build_info=BuildInfo(version=__version__, commit=COMMIT, built_at=BUILD_DATE),
    )


def main() -> None:
    configure_logging(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
    )
    config = HttpConfig.from_env()
    logger.info(f"Starting {SERVICE_NAME} v{__version__} (Build {BUILD_DATE})", extra=sanitize(config.summary()))

    obs_config = ObservabilityConfig.from_env()
    obs_config.service_version = __version__
    metrics, tracer = build_capabilities(obs_config)

    lifecycle = create_server(config, metrics=metrics, tracer=tracer)
    try:
        asyncio.run(lifecycle.run())
    except KeyboardInterrupt:
        pass
    logger.info(f"{SERVICE_NAME} stopped")


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    main()
