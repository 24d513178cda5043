# ============================================================================
# HEALTH CHECK REGISTRY
# ============================================================================
# STATUS: Infrastructure - Check state table and aggregation
# PURPOSE: Record check status per probe kind, aggregate under a deadline
# ============================================================================
"""
Health Check Registry

Holds the current status of every named check, keyed by probe kind, and
computes aggregate pass/fail results for the probe endpoints.

The registry is an explicitly constructed object owned by the server
lifecycle and handed to whoever needs to report status; there is no global
instance.

Usage:
    registry = HealthRegistry()

    # Push status from anywhere (threads or tasks)
    registry.set(ProbeKind.READINESS, "db", None)
    registry.set(ProbeKind.READINESS, "cache", ConnectionError("refused"))

    # Or register a self-describing check that runs on every aggregate
    registry.register(FuncCheck("queue", ping_queue))

    result = await registry.aggregate(ProbeKind.READINESS, timeout=0.3)
"""

import asyncio
import logging
import threading
from typing import Dict, List, Optional, Union

from health.core import (
    AggregateResult,
    CheckState,
    HealthCheck,
    ProbeKind,
    error_message,
)

logger = logging.getLogger(__name__)


class HealthRegistry:
    """
    Registry of health check state.

    Maintains the last reported error per (kind, name). Writers (``set``)
    and readers (``aggregate``) may run concurrently from any thread or
    task; every access to the tables happens under one short-lived lock, so
    readers always see whole entries.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[ProbeKind, Dict[str, CheckState]] = {kind: {} for kind in ProbeKind}
        self._checks: Dict[ProbeKind, Dict[str, HealthCheck]] = {kind: {} for kind in ProbeKind}

    def register(self, check: HealthCheck) -> None:
        """
        Register a self-describing check.

        The check runs on every aggregate of its kind and its outcome is
        recorded through ``set``.
        """
        kind = ProbeKind(check.kind)
        with self._lock:
            if check.name in self._checks[kind]:
                logger.warning(f"Overwriting health check: {kind.value}/{check.name}")
            self._checks[kind][check.name] = check
        logger.debug(f"Registered health check: {kind.value}/{check.name}")

    def set(
        self,
        kind: Union[ProbeKind, str],
        name: str,
        error: Union[None, bool, str, BaseException] = None,
    ) -> None:
        """
        Record the current status of a check. Last write wins.

        Args:
            kind: Probe kind
            name: Check name (unique per kind)
            error: None when healthy, otherwise the failure
        """
        kind = ProbeKind(kind)
        state = CheckState(kind=kind, name=name, last_error=error_message(error))
        with self._lock:
            self._states[kind][name] = state

    def get(self, kind: Union[ProbeKind, str], name: str) -> Optional[CheckState]:
        """Get the current state of one check."""
        with self._lock:
            return self._states[ProbeKind(kind)].get(name)

    def names(self, kind: Union[ProbeKind, str]) -> List[str]:
        """Names of all checks known under a kind."""
        kind = ProbeKind(kind)
        with self._lock:
            return sorted(set(self._states[kind]) | set(self._checks[kind]))

    async def aggregate(
        self,
        kind: Union[ProbeKind, str],
        timeout: Optional[float] = None,
    ) -> AggregateResult:
        """
        Compute the aggregate result for a probe kind.

        Registered checks of the kind run concurrently first; any still
        running when ``timeout`` elapses is cancelled and recorded as timed
        out, so the call returns by the deadline.

        Returns:
            AggregateResult; ok is True iff no check of the kind holds an
            error (vacuously True with no checks)
        """
        kind = ProbeKind(kind)
        with self._lock:
            checks = list(self._checks[kind].values())

        if checks:
            await self._run_checks(checks, timeout)

        with self._lock:
            snapshot = dict(self._states[kind])

        details = {name: state.status for name, state in sorted(snapshot.items())}
        ok = all(state.healthy for state in snapshot.values())
        if not ok:
            logger.debug(f"Aggregate {kind.value} not ok: {details}")
        return AggregateResult(ok=ok, details=details)

    async def _run_checks(self, checks: List[HealthCheck], timeout: Optional[float]) -> None:
        """Run checks in parallel, bounded by the overall timeout."""
        tasks = {asyncio.create_task(self._run_check(check)): check for check in checks}

        done, pending = await asyncio.wait(tasks, timeout=timeout)

        for task in pending:
            task.cancel()
            check = tasks[task]
            logger.warning(f"Health check {check.name} timed out after {timeout}s (overall deadline)")
            self.set(check.kind, check.name, f"timeout after {timeout}s")

    async def _run_check(self, check: HealthCheck) -> None:
        """Execute a single check with its own timeout and record the outcome."""
        try:
            outcome = await asyncio.wait_for(check.check(), timeout=check.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Health check {check.name} timed out after {check.timeout_seconds}s")
            outcome = f"timeout after {check.timeout_seconds}s"
        except Exception as e:
            logger.warning(f"Health check {check.name} failed: {e}")
            outcome = e
        self.set(check.kind, check.name, outcome)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HealthRegistry",
]
