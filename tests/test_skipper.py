# ============================================================================
# SKIPPER TESTS
# ============================================================================
# STATUS: Tests - Skip-rule compilation and matching
# PURPOSE: Verify SkipSet, default probe rules and new_skipper
# ============================================================================
"""
Skipper Tests

Run with:
    pytest tests/test_skipper.py -v
"""

import pytest

from core.config import DisabledURL, HealthConfig, HttpConfig, LoggingConfig, RequestConfig
from core.errors import ConfigurationError
from middleware.skipper import SkipSet, default_rules, new_skipper


def _config(*rules, **health):
    return HttpConfig(
        health=HealthConfig(**health),
        request=RequestConfig(logging=LoggingConfig(disabled_urls=tuple(rules))),
    )


# ============================================================================
# COMPILATION
# ============================================================================

class TestCompile:

    def test_invalid_pattern_raises_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            SkipSet.compile([
                DisabledURL(method="GET", url_pattern="^/ok$"),
                DisabledURL(method="GET", url_pattern="^/broken($"),
            ])
        assert exc_info.value.value == "^/broken($"

    def test_new_skipper_rejects_bad_user_rule(self):
        with pytest.raises(ConfigurationError):
            new_skipper(_config(DisabledURL(url_pattern="[unclosed")))

    def test_methods_are_uppercased(self):
        skipper = SkipSet.compile([DisabledURL(method="post", url_pattern="^/x$")])
        assert skipper.rules[0].method == "POST"

    def test_empty_set_matches_nothing(self):
        assert SkipSet().matches("GET", "/anything") is False


# ============================================================================
# MATCHING
# ============================================================================

class TestMatches:

    def test_method_comparison_is_case_insensitive(self):
        skipper = SkipSet.compile([DisabledURL(method="GET", url_pattern="^/metrics$")])
        assert skipper.matches("get", "/metrics")
        assert skipper.matches("GET", "/metrics")
        assert not skipper.matches("POST", "/metrics")

    def test_empty_method_matches_any_method(self):
        skipper = SkipSet.compile([DisabledURL(method="", url_pattern="^/static/")])
        for method in ("GET", "POST", "DELETE", "options"):
            assert skipper.matches(method, "/static/app.js")

    def test_unanchored_pattern_matches_partially(self):
        skipper = SkipSet.compile([DisabledURL(url_pattern="internal")])
        assert skipper.matches("GET", "/api/internal/stats")

    def test_anchored_pattern_requires_full_path(self):
        skipper = SkipSet.compile([DisabledURL(url_pattern="^/ping$")])
        assert not skipper.matches("GET", "/ping/extra")

    def test_result_independent_of_rule_order(self):
        rules = [
            DisabledURL(method="GET", url_pattern="^/a$"),
            DisabledURL(method="", url_pattern="^/b"),
            DisabledURL(method="POST", url_pattern="^/c$"),
        ]
        forward = SkipSet.compile(rules)
        backward = SkipSet.compile(list(reversed(rules)))
        requests = [
            ("GET", "/a"), ("POST", "/a"), ("PUT", "/b/1"),
            ("POST", "/c"), ("GET", "/c"), ("GET", "/d"),
        ]
        for method, path in requests:
            assert forward.matches(method, path) == backward.matches(method, path)

    def test_callable_alias(self):
        skipper = SkipSet.compile([DisabledURL(url_pattern="^/x$")])
        assert skipper("GET", "/x")


# ============================================================================
# DEFAULT RULES
# ============================================================================

class TestDefaults:

    def test_defaults_only_scenario(self):
        skipper = new_skipper(HttpConfig())
        assert skipper.matches("GET", "/healthz")
        assert skipper.matches("GET", "/livez")
        assert not skipper.matches("GET", "/api/users")

    def test_info_parent_wildcard(self):
        skipper = new_skipper(HttpConfig())
        assert skipper.matches("GET", "/actuator/info")
        assert skipper.matches("GET", "/actuator/env")
        assert not skipper.matches("GET", "/actuators")

    def test_defaults_are_get_only(self):
        skipper = new_skipper(HttpConfig())
        assert not skipper.matches("POST", "/healthz")

    def test_defaults_come_before_user_rules(self):
        skipper = new_skipper(_config(DisabledURL(method="GET", url_pattern="^/metrics$")))
        patterns = [rule.pattern.pattern for rule in skipper.rules]
        assert patterns[:3] == [r.url_pattern for r in default_rules()]
        assert patterns[3] == "^/metrics$"
        assert skipper.matches("GET", "/metrics")

    def test_probes_skipped_regardless_of_user_rules(self):
        skipper = new_skipper(_config(
            DisabledURL(method="POST", url_pattern="^/healthz$"),
            DisabledURL(method="DELETE", url_pattern=".*"),
        ))
        assert skipper.matches("GET", "/healthz")
        assert skipper.matches("GET", "/livez")

    def test_custom_probe_paths(self):
        skipper = new_skipper(_config(
            readiness_path="/ready",
            liveness_path="/alive",
            info_path="/manage/info",
        ))
        assert skipper.matches("GET", "/ready")
        assert skipper.matches("GET", "/alive")
        assert skipper.matches("GET", "/manage/health")
        assert not skipper.matches("GET", "/healthz")

    def test_base_path_prefixes_defaults(self):
        skipper = new_skipper(HttpConfig(base_path="/svc"))
        assert skipper.matches("GET", "/svc/healthz")
        assert not skipper.matches("GET", "/healthz")

    def test_top_level_info_path_is_exact(self):
        rules = default_rules(info_path="/info")
        skipper = SkipSet.compile(rules)
        assert skipper.matches("GET", "/info")
        assert not skipper.matches("GET", "/api/users")

    def test_probe_paths_are_escaped(self):
        skipper = SkipSet.compile(default_rules(readiness_path="/health.z"))
        assert skipper.matches("GET", "/health.z")
        assert not skipper.matches("GET", "/healthXz")
