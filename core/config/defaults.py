# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# STATUS: Core - HTTP server configuration
# PURPOSE: Listener address, probe paths, timeouts and skip rules
# ============================================================================
"""
Configuration Defaults

Typed configuration for the HTTP backbone. Values come from (in order of
increasing precedence) the dataclass defaults, an optional YAML file and
environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Malformed values raise ConfigurationError at load time

YAML shape (the ``http`` subtree):

    http:
      addr: ":8080"
      base_path: "/api"
      shutdown_timeout: 3s
      health:
        readiness_path: /healthz
        liveness_path: /livez
        info_path: /actuator/info
        timeout: 300ms
      request:
        logging:
          disabled_urls:
            - method: GET
              urlPattern: "^/metrics$"
"""

import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from core.errors import ConfigurationError


_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[str, int, float], field_name: str = "duration") -> float:
    """
    Parse a duration into seconds.

    Accepts numbers (seconds) or strings such as "300ms", "2s", "1.5m".
    A bare numeric string is seconds.
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid {field_name}: {value!r}", field=field_name, value=value)
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigurationError(f"Negative {field_name}: {value}", field=field_name, value=value)
        return float(value)
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid {field_name}: {value!r}", field=field_name, value=value)

    match = _DURATION_RE.match(value)
    if not match:
        raise ConfigurationError(f"Invalid {field_name}: {value!r}", field=field_name, value=value)
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit or "s"]


@dataclass(frozen=True)
class DisabledURL:
    """A URL pattern (optionally restricted to one method) excluded from request logging."""
    method: str = ""
    url_pattern: str = ""

    @classmethod
    def from_mapping(cls, raw: Any) -> "DisabledURL":
        """Build from a config entry ({method, urlPattern} or {method, url_pattern})."""
        if not isinstance(raw, Mapping):
            raise ConfigurationError(
                f"Skip rule must be a mapping, got {type(raw).__name__}",
                field="disabled_urls",
                value=raw,
            )
        pattern = raw.get("urlPattern", raw.get("url_pattern"))
        method = raw.get("method") or ""
        if not isinstance(pattern, str) or not pattern:
            raise ConfigurationError(
                "Skip rule requires a non-empty urlPattern",
                field="disabled_urls",
                value=raw,
            )
        if not isinstance(method, str):
            raise ConfigurationError(
                "Skip rule method must be a string",
                field="disabled_urls",
                value=raw,
            )
        return cls(method=method, url_pattern=pattern)

    @classmethod
    def parse(cls, item: str) -> "DisabledURL":
        """Parse the compact env form: ``METHOD:pattern`` or ``pattern``."""
        item = item.strip()
        method, sep, pattern = item.partition(":")
        if sep and method.isalpha():
            return cls(method=method, url_pattern=pattern)
        return cls(method="", url_pattern=item)


@dataclass(frozen=True)
class HealthConfig:
    """Health probe endpoint configuration."""
    readiness_path: str = "/healthz"
    liveness_path: str = "/livez"
    info_path: str = "/actuator/info"
    timeout: float = 0.3  # seconds

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "HealthConfig":
        base = cls()
        return cls(
            readiness_path=raw.get("readiness_path") or base.readiness_path,
            liveness_path=raw.get("liveness_path") or base.liveness_path,
            info_path=raw.get("info_path") or base.info_path,
            timeout=(
                parse_duration(raw["timeout"], "health.timeout")
                if raw.get("timeout") not in (None, "", 0)
                else base.timeout
            ),
        )


@dataclass(frozen=True)
class LoggingConfig:
    """Request logging configuration."""
    disabled_urls: Tuple[DisabledURL, ...] = ()


@dataclass(frozen=True)
class RequestConfig:
    """Request-specific configuration."""
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RequestConfig":
        logging_raw = raw.get("logging") or {}
        urls = logging_raw.get("disabled_urls") or []
        if not isinstance(urls, (list, tuple)):
            raise ConfigurationError(
                "disabled_urls must be a list",
                field="request.logging.disabled_urls",
                value=urls,
            )
        return cls(logging=LoggingConfig(
            disabled_urls=tuple(DisabledURL.from_mapping(u) for u in urls),
        ))


@dataclass(frozen=True)
class HttpConfig:
    """
    Configuration for the HTTP server.

    Attributes:
        addr: Listen address (":8080" or "localhost:8080")
        base_path: Prefix for the probe routes
        health: Probe endpoint paths and aggregation timeout
        request: Request logging configuration (skip rules)
        shutdown_timeout: Grace window for draining in-flight requests
        server_version: Value for X-Server-Version and envelope meta
    """
    addr: str = ":8080"
    base_path: str = ""
    health: HealthConfig = field(default_factory=HealthConfig)
    request: RequestConfig = field(default_factory=RequestConfig)
    shutdown_timeout: float = 3.0
    server_version: Optional[str] = None

    def bind_address(self) -> Tuple[str, int]:
        """Split addr into (host, port). Empty host binds all interfaces."""
        host, sep, port = self.addr.rpartition(":")
        if not sep:
            raise ConfigurationError(f"Invalid addr: {self.addr!r}", field="addr", value=self.addr)
        try:
            port_num = int(port)
        except ValueError:
            raise ConfigurationError(f"Invalid port in addr: {self.addr!r}", field="addr", value=self.addr)
        if not 0 <= port_num <= 65535:
            raise ConfigurationError(f"Port out of range: {port_num}", field="addr", value=self.addr)
        host = host.strip("[]") or "0.0.0.0"
        return host, port_num

    def summary(self) -> Dict[str, Any]:
        """Compact diagnostic map for logging at startup."""
        return {
            "addr": self.addr,
            "base_path": self.base_path,
            "readiness_path": self.health.readiness_path,
            "liveness_path": self.health.liveness_path,
            "health_timeout": self.health.timeout,
        }

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "HttpConfig":
        """Build from the ``http`` config subtree."""
        raw = raw or {}
        if not isinstance(raw, Mapping):
            raise ConfigurationError("http config must be a mapping", field="http", value=raw)
        base = cls()
        return cls(
            addr=str(raw.get("addr") or base.addr),
            base_path=raw.get("base_path") or base.base_path,
            health=HealthConfig.from_mapping(raw.get("health") or {}),
            request=RequestConfig.from_mapping(raw.get("request") or {}),
            shutdown_timeout=(
                parse_duration(raw["shutdown_timeout"], "shutdown_timeout")
                if raw.get("shutdown_timeout") not in (None, "")
                else base.shutdown_timeout
            ),
            server_version=raw.get("server_version") or base.server_version,
        )

    @classmethod
    def from_yaml(cls, path: str) -> "HttpConfig":
        """Load from a YAML file, reading the ``http`` key if present."""
        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {path}: {e}", field="file", value=path)
        if isinstance(data, Mapping) and "http" in data:
            data = data["http"]
        return cls.from_mapping(data)

    @classmethod
    def from_env(cls) -> "HttpConfig":
        """Create from environment variables (YAML file first if HTTP_CONFIG_FILE is set)."""
        config_file = os.getenv("HTTP_CONFIG_FILE")
        config = cls.from_yaml(config_file) if config_file else cls()

        health = config.health
        health = replace(
            health,
            readiness_path=os.getenv("HTTP_HEALTH_READINESS_PATH", health.readiness_path),
            liveness_path=os.getenv("HTTP_HEALTH_LIVENESS_PATH", health.liveness_path),
            info_path=os.getenv("HTTP_HEALTH_INFO_PATH", health.info_path),
        )
        if os.getenv("HTTP_HEALTH_TIMEOUT"):
            health = replace(health, timeout=parse_duration(os.environ["HTTP_HEALTH_TIMEOUT"], "HTTP_HEALTH_TIMEOUT"))

        request = config.request
        if os.getenv("HTTP_LOGGING_DISABLED_URLS"):
            extra = [
                DisabledURL.parse(item)
                for item in os.environ["HTTP_LOGGING_DISABLED_URLS"].split(",")
                if item.strip()
            ]
            request = RequestConfig(logging=LoggingConfig(
                disabled_urls=request.logging.disabled_urls + tuple(extra),
            ))

        shutdown_timeout = config.shutdown_timeout
        if os.getenv("HTTP_SHUTDOWN_TIMEOUT"):
            shutdown_timeout = parse_duration(os.environ["HTTP_SHUTDOWN_TIMEOUT"], "HTTP_SHUTDOWN_TIMEOUT")

        return cls(
            addr=os.getenv("HTTP_ADDR", config.addr),
            base_path=os.getenv("HTTP_BASE_PATH", config.base_path),
            health=health,
            request=request,
            shutdown_timeout=shutdown_timeout,
            server_version=os.getenv("HTTP_SERVER_VERSION", config.server_version),
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "parse_duration",
    "DisabledURL",
    "HealthConfig",
    "LoggingConfig",
    "RequestConfig",
    "HttpConfig",
]
