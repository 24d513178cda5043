# ============================================================================
# MIDDLEWARE MODULE
# ============================================================================
# STATUS: Middleware - Request pipeline
# PURPOSE: Recovery, request id, logging, metrics and tracing stages
# ============================================================================
"""
Middleware Module

Architecture:
- SkipSet / new_skipper: which requests skip instrumentation
- Core stages: RecoveryMiddleware, RequestIDMiddleware, LoggingMiddleware
- Observability stages: MetricsMiddleware, TracingMiddleware
- MiddlewarePipeline: ordered composition installed on the app

Usage:
    from middleware import MiddlewarePipeline, new_skipper

    pipeline = MiddlewarePipeline(skipper=new_skipper(config))
    pipeline.install(app)
"""

from middleware.skipper import Rule, SkipSet, default_rules, new_skipper
from middleware.core import (
    INTERNAL_ERROR_CODE,
    LoggingMiddleware,
    RecoveryMiddleware,
    RequestIDMiddleware,
)
from middleware.observability import (
    HttpInstruments,
    MetricsMiddleware,
    TracingMiddleware,
)
from middleware.pipeline import MiddlewarePipeline, Stage

__all__ = [
    # Skipper
    "Rule",
    "SkipSet",
    "default_rules",
    "new_skipper",
    # Stages
    "INTERNAL_ERROR_CODE",
    "LoggingMiddleware",
    "RecoveryMiddleware",
    "RequestIDMiddleware",
    "HttpInstruments",
    "MetricsMiddleware",
    "TracingMiddleware",
    # Pipeline
    "MiddlewarePipeline",
    "Stage",
]
