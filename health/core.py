# ============================================================================
# HEALTH CHECK CORE TYPES
# ============================================================================
# STATUS: Infrastructure - Probe kinds, checks and aggregate results
# PURPOSE: Health check interfaces and result types
# ============================================================================
"""
Health Check Core Types

Two probe kinds are aggregated independently:
- liveness: is the process alive (restart if not)
- readiness: can the process take traffic (route away if not)

A check is identified by (kind, name) and holds the last error reported for
it, or None when healthy. Checks can be pushed (``HealthRegistry.set``) or
self-describing (a ``HealthCheck`` subclass run on every aggregate).
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union


class ProbeKind(str, Enum):
    """Probe kinds an orchestrator polls."""
    LIVENESS = "liveness"
    READINESS = "readiness"


OK_STATUS = "ok"


@dataclass(frozen=True)
class CheckState:
    """Last reported state of one named check."""
    kind: ProbeKind
    name: str
    last_error: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.last_error is None

    @property
    def status(self) -> str:
        return OK_STATUS if self.last_error is None else self.last_error


@dataclass
class AggregateResult:
    """
    Snapshot of all checks of one kind.

    ``ok`` is True iff every check holds no error; ``details`` maps check
    name to "ok" or the error message.
    """
    ok: bool
    details: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {"ok": self.ok, "details": dict(self.details)}


class HealthCheck(ABC):
    """
    Base class for self-describing health checks.

    Subclass and implement check(); raise (or return an exception or error
    string) to report unhealthy, return None to report healthy.

    Attributes:
        name: Unique identifier for the check within its kind
        kind: Probe kind the check contributes to
        timeout_seconds: Max execution time before the check is timed out

    Example:
        class PostgresCheck(HealthCheck):
            name = "postgres"
            kind = ProbeKind.READINESS
            timeout_seconds = 0.2

            async def check(self):
                await pool.execute("SELECT 1")
    """

    name: str = "unnamed"
    kind: ProbeKind = ProbeKind.READINESS
    timeout_seconds: float = 1.0

    @abstractmethod
    async def check(self) -> Optional[Union[str, BaseException]]:
        pass


class FuncCheck(HealthCheck):
    """Wraps a plain (sync or async) callable as a HealthCheck."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Union[Any, Awaitable[Any]]],
        kind: ProbeKind = ProbeKind.READINESS,
        timeout_seconds: float = 1.0,
    ):
        self.name = name
        self.kind = ProbeKind(kind)
        self.timeout_seconds = timeout_seconds
        self._func = func

    async def check(self):
        if inspect.iscoroutinefunction(self._func):
            return await self._func()
        # Sync callables may block; keep them off the event loop
        result = await asyncio.to_thread(self._func)
        if inspect.isawaitable(result):
            result = await result
        return result


def error_message(error: Union[None, bool, str, BaseException]) -> Optional[str]:
    """
    Normalize an error value to the message stored in check state.

    None and True mean healthy; False, an exception or a message mean
    unhealthy.
    """
    if error is None or error is True:
        return None
    if error is False:
        return "check failed"
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error) or "check failed"


__all__ = [
    "ProbeKind",
    "OK_STATUS",
    "CheckState",
    "AggregateResult",
    "HealthCheck",
    "FuncCheck",
    "error_message",
]
