# ============================================================================
# MIDDLEWARE PIPELINE
# ============================================================================
# STATUS: Middleware - Ordered stage composition
# PURPOSE: Build the request pipeline around the application's handlers
# ============================================================================
"""
Middleware Pipeline

Stage order, outermost first:

    1. Recovery     exceptions -> 500 envelope
    2. Request-ID   correlation id for every later stage
    3. Meta         start time + metadata headers (optional)
    4. Logging      access log unless skipped
    5. extra        caller-supplied middleware
    6. Metrics      only with a real Metrics collaborator
    7. Tracing      only with a real Tracer collaborator
    8. handler

Which optional stages exist is decided once, in the constructor. Skip
rules apply to logging, metrics and tracing alike, so probe polling is
never instrumented.

Usage:
    pipeline = MiddlewarePipeline(skipper=new_skipper(config), metrics=metrics, tracer=tracer)
    pipeline.install(app)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from starlette.applications import Starlette
from starlette.types import ASGIApp

from core.logging import ContextLogger, get_logger, ComponentType
from core.observability import Metrics, NoopMetrics, NoopTracer, Tracer
from middleware.core import LoggingMiddleware, RecoveryMiddleware, RequestIDMiddleware
from middleware.observability import HttpInstruments, MetricsMiddleware, TracingMiddleware
from middleware.skipper import SkipSet
from responses.meta import MetaMiddleware

logger = logging.getLogger(__name__)


@dataclass
class Stage:
    """One middleware class plus its constructor options."""
    cls: Any
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.cls.__name__


class MiddlewarePipeline:
    """
    Ordered middleware composition.

    Args:
        logger: Access/recovery logger (defaults to the "http" logger)
        skipper: Skip rules for logging, metrics and tracing
        metrics: Metrics collaborator; None or NoopMetrics installs no stage
        tracer: Tracer collaborator; None or NoopTracer installs no stage
        server_version: X-Server-Version value; enables the meta stage
        with_meta: Enable the meta stage without a server version
        extra: Additional (middleware_class, options) pairs placed after logging
    """

    def __init__(
        self,
        logger: Optional[ContextLogger] = None,
        skipper: Optional[SkipSet] = None,
        metrics: Optional[Metrics] = None,
        tracer: Optional[Tracer] = None,
        server_version: Optional[str] = None,
        with_meta: bool = False,
        extra: Iterable = (),
    ):
        self.logger = logger or get_logger("http", ComponentType.HTTP)
        self.skipper = skipper if skipper is not None else SkipSet()
        self.server_version = server_version
        self.with_meta = with_meta or bool(server_version)
        self.extra = [item if isinstance(item, Stage) else Stage(*item) for item in extra]

        # Capability presence is resolved here, once
        self.metrics = None if metrics is None or isinstance(metrics, NoopMetrics) else metrics
        self.tracer = None if tracer is None or isinstance(tracer, NoopTracer) else tracer
        self.instruments = HttpInstruments(self.metrics) if self.metrics is not None else None

    def stages(self) -> List[Stage]:
        """Stages in request order (outermost first)."""
        stages = [
            Stage(RecoveryMiddleware, {"logger": self.logger}),
            Stage(RequestIDMiddleware),
        ]
        if self.with_meta:
            stages.append(Stage(MetaMiddleware, {"server_version": self.server_version}))
        stages.append(Stage(LoggingMiddleware, {"logger": self.logger, "skipper": self.skipper}))
        stages.extend(self.extra)
        if self.instruments is not None:
            stages.append(Stage(MetricsMiddleware, {"instruments": self.instruments, "skipper": self.skipper}))
        if self.tracer is not None:
            stages.append(Stage(TracingMiddleware, {"tracer": self.tracer, "skipper": self.skipper}))
        return stages

    def install(self, app: Starlette) -> None:
        """
        Add the stages to a Starlette/FastAPI app.

        ``add_middleware`` makes the last-added middleware outermost, so the
        stages are added innermost first.
        """
        stages = self.stages()
        for stage in reversed(stages):
            app.add_middleware(stage.cls, **stage.options)
        logger.info(f"Middleware pipeline installed: {' -> '.join(s.name for s in stages)}")

    def wrap(self, app: ASGIApp) -> ASGIApp:
        """Wrap a bare ASGI app in the stages and return the outermost layer."""
        for stage in reversed(self.stages()):
            app = stage.cls(app, **stage.options)
        return app


__all__ = [
    "Stage",
    "MiddlewarePipeline",
]
