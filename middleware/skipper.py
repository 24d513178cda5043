# ============================================================================
# REQUEST SKIPPER
# ============================================================================
# STATUS: Middleware - Skip-rule matching
# PURPOSE: Decide per request whether instrumentation applies
# ============================================================================
"""
Request Skipper

Compiles (method, URL regex) rules into an immutable SkipSet. The logging,
metrics and tracing stages ask ``SkipSet.matches(method, path)`` and leave
matching requests uninstrumented; the handler still runs normally.

Probe endpoints are always skipped: ``new_skipper`` puts the default probe
rules ahead of the user rules from config.

Patterns use ``re.search`` semantics. Anchor them with ``^...$`` to match
whole paths.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern, Tuple

from core.config import DisabledURL, HttpConfig
from core.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rule:
    """A compiled skip rule. Empty method matches any method."""
    method: str
    pattern: Pattern[str]

    def matches(self, method: str, path: str) -> bool:
        if self.method and self.method != method:
            return False
        return self.pattern.search(path) is not None


class SkipSet:
    """
    Ordered, immutable set of compiled skip rules.

    Read-only after construction, so concurrent requests evaluate it
    without locking.
    """

    __slots__ = ("_rules",)

    def __init__(self, rules: Iterable[Rule] = ()):
        self._rules: Tuple[Rule, ...] = tuple(rules)

    @classmethod
    def compile(cls, rules: Iterable[DisabledURL]) -> "SkipSet":
        """
        Compile rule definitions.

        Raises:
            ConfigurationError: on the first pattern that is not a valid
                regular expression; nothing is returned in that case
        """
        compiled = []
        for rule in rules:
            try:
                pattern = re.compile(rule.url_pattern)
            except (re.error, TypeError) as e:
                raise ConfigurationError(
                    f"Invalid skip rule pattern {rule.url_pattern!r}: {e}",
                    field="disabled_urls",
                    value=rule.url_pattern,
                ) from e
            compiled.append(Rule(method=(rule.method or "").upper(), pattern=pattern))
        return cls(compiled)

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    def matches(self, method: str, path: str) -> bool:
        """True if any rule matches the request; first match wins."""
        method = (method or "").upper()
        for rule in self._rules:
            if rule.matches(method, path):
                return True
        return False

    __call__ = matches

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"SkipSet({[(r.method, r.pattern.pattern) for r in self._rules]})"


def _prefixed(base_path: str, path: str) -> str:
    base = (base_path or "").rstrip("/")
    return f"{base}/{path.lstrip('/')}"


def default_rules(
    readiness_path: str = "/healthz",
    liveness_path: str = "/livez",
    info_path: str = "/actuator/info",
    base_path: str = "",
) -> Tuple[DisabledURL, ...]:
    """
    Rules that keep probe traffic out of the access log.

    Readiness and liveness are exact matches; the info rule covers every
    sibling of the info endpoint (``/actuator/info`` -> ``^/actuator/.*``).
    """
    readiness = _prefixed(base_path, readiness_path)
    liveness = _prefixed(base_path, liveness_path)
    info = _prefixed(base_path, info_path)
    parent = info.rsplit("/", 1)[0]
    # A top-level info path has no parent segment; a wildcard there would skip everything
    info_pattern = f"^{re.escape(parent)}/.*" if parent else f"^{re.escape(info)}$"
    return (
        DisabledURL(method="GET", url_pattern=f"^{re.escape(readiness)}$"),
        DisabledURL(method="GET", url_pattern=f"^{re.escape(liveness)}$"),
        DisabledURL(method="GET", url_pattern=info_pattern),
    )


def new_skipper(config: Optional[HttpConfig] = None) -> SkipSet:
    """
    Build the SkipSet for a server: default probe rules, then user rules.

    Raises:
        ConfigurationError: if any user pattern does not compile
    """
    config = config or HttpConfig()
    health = config.health
    rules = default_rules(
        readiness_path=health.readiness_path,
        liveness_path=health.liveness_path,
        info_path=health.info_path,
        base_path=config.base_path,
    ) + tuple(config.request.logging.disabled_urls)
    skipper = SkipSet.compile(rules)
    logger.debug(f"Skip rules compiled: {len(skipper)} ({len(skipper) - 3} user)")
    return skipper


__all__ = [
    "Rule",
    "SkipSet",
    "default_rules",
    "new_skipper",
]
