"""
Unit tests for PolicyEngine.
"""

import pytest

from service_policy.app.cache.decision_cache import DecisionCache
from service_policy.app.rules.engine import PolicyEngine
from service_policy.app.rules.matcher import RuleMatcher
from service_policy.app.rules.models import Decision, PolicyDecision, PolicyRule, RuleType
from shared.config import PolicySettings
from shared.errors import RequestValidationError, RuleValidationError, SimulationError
from shared.logging import request_id_var, subject_id_var
from shared.metrics import MetricsCollector
from shared.test_helpers import create_access_request, create_effect, create_policy_rule


@pytest.fixture
def settings():
    """Create deterministic engine settings."""
    return PolicySettings(
        decision_cache_enabled=True,
        decision_cache_ttl_seconds=60,
        context_requirements_fail_closed=False,
        default_timezone="UTC",
    )


@pytest.fixture
def engine(settings):
    """Create an empty PolicyEngine instance."""
    return PolicyEngine(settings=settings)


@pytest.fixture
def access_request():
    """Create a request from an Admin reading a confidential well."""
    return create_access_request(
        roles=["Admin"],
        action="read",
        resource_attributes={"dataClassification": "Confidential", "area": 1500},
    )


class TestRuleOrdering:
    """Test cases for priority ordering."""

    def test_rules_sorted_by_priority(self, settings):
        """Test rules are evaluated highest priority first regardless of insertion order."""
        engine = PolicyEngine([
            create_policy_rule("p10", priority=10),
            create_policy_rule("p50", priority=50),
            create_policy_rule("p30", priority=30),
        ], settings=settings)

        assert [r.priority for r in engine.rules] == [50, 30, 10]

        decision = engine.evaluate(create_access_request())
        assert [r.rule_id for r in decision.applied_rules] == ["p50", "p30", "p10"]
        assert decision.reason == "Rule 'Rule p50' applied: Test rule p50"

    def test_equal_priorities_keep_insertion_order(self, engine):
        """Test the sort is stable."""
        engine.add_rule(create_policy_rule("first", priority=10))
        engine.add_rule(create_policy_rule("second", priority=10))
        engine.add_rule(create_policy_rule("top", priority=20))

        assert [r.id for r in engine.rules] == ["top", "first", "second"]


class TestDecisions:
    """Test cases for decision resolution."""

    def test_deny_overrides_higher_priority_allow(self, engine, access_request):
        """Test an applicable deny wins over an applicable allow."""
        engine.add_rule(create_policy_rule(
            "admin-read", priority=200, subject_pattern="Admin", actions=["read"],
            effects=[create_effect("obligation", "log_access", level="info")],
        ))
        engine.add_rule(create_policy_rule(
            "confidential-deny", rule_type="deny", priority=100,
            conditions=[{
                "attribute": "resource.attributes.dataClassification",
                "operator": "equals",
                "value": "Confidential",
            }],
        ))

        decision = engine.evaluate(access_request)

        assert decision.decision == Decision.DENY
        assert decision.allowed is False
        assert [r.rule_id for r in decision.applied_rules] == ["admin-read", "confidential-deny"]
        assert [r.decision for r in decision.applied_rules] == [RuleType.ALLOW, RuleType.DENY]
        assert [e.action for e in decision.obligations] == ["log_access"]
        assert decision.reason == "Access denied by rule 'Rule confidential-deny': Test rule confidential-deny"

    def test_deny_stops_evaluation(self, engine, access_request):
        """Test lower-priority rules contribute nothing after a deny."""
        engine.add_rule(create_policy_rule("deny", rule_type="deny", priority=300))
        engine.add_rule(create_policy_rule(
            "allow", priority=100, effects=[create_effect("advice", "notify_owner")],
        ))

        decision = engine.evaluate(access_request)

        assert decision.decision == Decision.DENY
        assert [r.rule_id for r in decision.applied_rules] == ["deny"]
        assert decision.advice == []

    def test_allow_pools_effects_from_later_rules(self, engine, access_request):
        """Test effects of every applied rule are pooled by type."""
        engine.add_rule(create_policy_rule(
            "a", priority=20, effects=[create_effect("obligation", "log_access")],
        ))
        engine.add_rule(create_policy_rule(
            "b", priority=10, effects=[
                create_effect("advice", "show_banner"),
                create_effect("information", "data_owner", owner="acme"),
            ],
        ))

        decision = engine.evaluate(access_request)

        assert decision.decision == Decision.ALLOW
        assert decision.allowed is True
        assert decision.reason == "Rule 'Rule a' applied: Test rule a"
        assert [e.action for e in decision.obligations] == ["log_access"]
        assert [e.action for e in decision.advice] == ["show_banner"]
        assert decision.information[0].parameters == {"owner": "acme"}

    def test_not_applicable(self, engine, access_request):
        """Test no applicable rule yields not_applicable."""
        engine.add_rule(create_policy_rule("writers", actions=["write"]))

        decision = engine.evaluate(access_request)

        assert decision.decision == Decision.NOT_APPLICABLE
        assert decision.applied_rules == []
        assert decision.reason == "No applicable rules found"
        assert decision.allowed is False

    def test_inactive_rules_excluded(self, engine, access_request):
        """Test inactive rules never apply."""
        engine.add_rule(create_policy_rule("dormant", priority=500, rule_type="deny", isActive=False))
        engine.add_rule(create_policy_rule("live", priority=1))

        decision = engine.evaluate(access_request)

        assert decision.decision == Decision.ALLOW
        assert [r.rule_id for r in decision.applied_rules] == ["live"]

    def test_weekday_rule_on_weekend(self, engine):
        """Test time restrictions override otherwise matching rules."""
        engine.add_rule(create_policy_rule("weekdays", timeRestrictions={"daysOfWeek": [1, 2, 3, 4, 5]}))

        saturday = engine.evaluate(create_access_request(timestamp="2024-01-13T12:00:00Z"))
        monday = engine.evaluate(create_access_request(timestamp="2024-01-15T12:00:00Z"))

        assert saturday.decision == Decision.NOT_APPLICABLE
        assert monday.decision == Decision.ALLOW

    def test_evaluation_time_recorded(self, engine, access_request):
        """Test evaluation time is a non-negative duration in milliseconds."""
        engine.add_rule(create_policy_rule())

        decision = engine.evaluate(access_request)

        assert isinstance(decision, PolicyDecision)
        assert decision.evaluation_time >= 0
        assert decision.cached is False

    def test_wire_serialization(self, engine, access_request):
        """Test decisions serialize with camelCase names."""
        engine.add_rule(create_policy_rule(effects=[create_effect("obligation", "log_access")]))

        payload = engine.evaluate(access_request).to_dict()

        assert payload["decision"] == "allow"
        assert payload["appliedRules"][0] == {
            "ruleId": "rule-1", "ruleName": "Rule rule-1", "decision": "allow", "priority": 100,
        }
        assert payload["obligations"][0]["type"] == "obligation"
        assert "evaluationTime" in payload


class TestDecisionCaching:
    """Test cases for decision caching and invalidation."""

    def test_repeat_evaluation_is_identical(self, engine, access_request):
        """Test identical requests return identical decisions from cache."""
        engine.add_rule(create_policy_rule())

        first = engine.evaluate(access_request)
        second = engine.evaluate(access_request)

        assert first.cached is False
        assert second.cached is True
        assert second.decision == first.decision
        assert second.applied_rules == first.applied_rules
        assert second.reason == first.reason

    def test_cached_decision_cannot_be_corrupted(self, engine, access_request):
        """Test mutating a returned decision does not affect the cache."""
        engine.add_rule(create_policy_rule())

        engine.evaluate(access_request).applied_rules.clear()

        assert len(engine.evaluate(access_request).applied_rules) == 1

    def test_add_rule_invalidates(self, engine, access_request):
        """Test re-evaluation after add_rule is never stale."""
        assert engine.evaluate(access_request).decision == Decision.NOT_APPLICABLE

        engine.add_rule(create_policy_rule())
        decision = engine.evaluate(access_request)

        assert decision.decision == Decision.ALLOW
        assert decision.cached is False

    def test_remove_rule_invalidates(self, engine, access_request):
        """Test re-evaluation after remove_rule is never stale."""
        engine.add_rule(create_policy_rule())
        assert engine.evaluate(access_request).decision == Decision.ALLOW

        assert engine.remove_rule("rule-1") is True
        assert engine.evaluate(access_request).decision == Decision.NOT_APPLICABLE

    def test_entries_expire(self, settings, access_request):
        """Test cached decisions are not served past their validity window."""
        now = [1000.0]
        cache = DecisionCache(ttl_seconds=5, clock=lambda: now[0])
        engine = PolicyEngine([create_policy_rule()], settings=settings, cache=cache)

        engine.evaluate(access_request)
        now[0] += 4
        assert engine.evaluate(access_request).cached is True

        now[0] += 2
        assert engine.evaluate(access_request).cached is False

    def test_cache_disabled(self, access_request):
        """Test engines can run without a decision cache."""
        engine = PolicyEngine([create_policy_rule()], settings=PolicySettings(decision_cache_enabled=False))

        engine.evaluate(access_request)

        assert engine.cache is None
        assert engine.evaluate(access_request).cached is False


class TestRuleManagement:
    """Test cases for rule mutation and lookup."""

    def test_add_rule_upserts(self, engine):
        """Test adding an existing id replaces the rule and re-sorts."""
        engine.add_rule(create_policy_rule("a", priority=10))
        engine.add_rule(create_policy_rule("b", priority=20))
        engine.add_rule(create_policy_rule("a", priority=30, name="Renamed"))

        assert [r.id for r in engine.rules] == ["a", "b"]
        assert engine.get_rule("a").name == "Renamed"

    def test_add_rule_accepts_models(self, engine):
        """Test add_rule takes PolicyRule instances as well as mappings."""
        rule = PolicyRule.model_validate(create_policy_rule("model"))

        assert engine.add_rule(rule) is rule
        assert engine.get_rule("model") is rule

    def test_add_rule_rejects_malformed(self, engine):
        """Test malformed rule mappings raise RuleValidationError."""
        bad = create_policy_rule("bad")
        del bad["type"]

        with pytest.raises(RuleValidationError) as exc_info:
            engine.add_rule(bad)

        assert exc_info.value.code == "RULE_VALIDATION_ERROR"
        assert exc_info.value.details["errors"][0]["loc"] == ["type"]
        assert engine.rules == ()

    def test_remove_missing_rule(self, engine):
        """Test removing an unknown id reports False."""
        assert engine.remove_rule("ghost") is False

    def test_clear_all_rules(self, engine, access_request):
        """Test clearing drops every rule and cached decision."""
        engine.add_rule(create_policy_rule())
        engine.evaluate(access_request)

        engine.clear_all_rules()

        assert engine.rules == ()
        assert len(engine.cache) == 0
        assert engine.evaluate(access_request).decision == Decision.NOT_APPLICABLE

    def test_get_rules_for_resource(self, engine):
        """Test lookup by resource type returns active rules only."""
        engine.add_rule(create_policy_rule("meta", priority=1))
        engine.add_rule(create_policy_rule("meta-off", priority=2, isActive=False))
        engine.add_rule(create_policy_rule("contract", resource_type="contract"))

        assert [r.id for r in engine.get_rules_for_resource("metadata")] == ["meta"]
        assert [r.id for r in engine.get_rules_for_resource("contract")] == ["contract"]
        assert engine.get_rules_for_resource("file") == []

    def test_engine_stats(self, engine, access_request):
        """Test engine statistics."""
        engine.add_rule(create_policy_rule("a"))
        engine.add_rule(create_policy_rule("b", isActive=False, resource_type="contract"))
        engine.evaluate(access_request)

        stats = engine.get_engine_stats()

        assert stats["total_rules"] == 2
        assert stats["active_rules"] == 1
        assert stats["inactive_rules"] == 1
        assert stats["resource_types"] == ["contract", "metadata"]
        assert stats["cache"]["entries"] == 1

    def test_independent_engines(self, settings, access_request):
        """Test engines share no rule or cache state."""
        tenant_a = PolicyEngine([create_policy_rule()], settings=settings)
        tenant_b = PolicyEngine(settings=settings)

        assert tenant_a.evaluate(access_request).decision == Decision.ALLOW
        assert tenant_b.evaluate(access_request).decision == Decision.NOT_APPLICABLE


class TestDiagnostics:
    """Test cases for test_rule and simulate_policy."""

    def test_test_rule_is_side_effect_free(self, engine, access_request):
        """Test test_rule traces without touching rules or cache."""
        result = engine.test_rule(
            create_policy_rule(conditions=[
                {"attribute": "resource.attributes.area", "operator": "greater_than", "value": 1000},
            ]),
            access_request,
        )

        assert result.applicable is True
        assert result.condition_results[0].reason == "1500 > 1000"
        assert engine.rules == ()
        assert len(engine.cache) == 0

    def test_simulate_policy(self, engine):
        """Test simulation aggregates decisions and rule usage."""
        rules = [
            create_policy_rule("readers", priority=10),
            create_policy_rule(
                "no-confidential", rule_type="deny", priority=20,
                conditions=[{
                    "attribute": "resource.attributes.dataClassification",
                    "operator": "equals",
                    "value": "Confidential",
                }],
            ),
        ]
        requests = [
            create_access_request(resource_id="metadata:well:1"),
            create_access_request(resource_id="metadata:well:2"),
            create_access_request(resource_id="metadata:well:3", resource_attributes={"dataClassification": "Confidential"}),
            create_access_request(action="delete"),
        ]

        report = engine.simulate_policy(requests, rules)

        assert report.total_requests == 4
        assert report.allowed == 2
        assert report.denied == 1
        assert report.not_applicable == 1
        assert report.rule_usage == {"readers": 2, "no-confidential": 1}
        assert report.average_evaluation_time >= 0
        assert engine.rules == ()

    def test_simulate_empty_batch(self, engine):
        """Test an empty batch reports zeros."""
        report = engine.simulate_policy([], [create_policy_rule()])

        assert report.total_requests == 0
        assert report.average_evaluation_time == 0.0

    def test_simulate_invalid_input(self, engine):
        """Test malformed simulation input raises SimulationError."""
        with pytest.raises(SimulationError) as exc_info:
            engine.simulate_policy([{"id": "broken"}], [create_policy_rule()])

        assert exc_info.value.details["cause"] == "REQUEST_VALIDATION_ERROR"


class TestRequestHandling:
    """Test cases for request input handling."""

    def test_malformed_request(self, engine):
        """Test malformed request mappings raise RequestValidationError."""
        with pytest.raises(RequestValidationError):
            engine.evaluate({"id": "r1", "subject": {"id": "u"}})

    def test_missing_attributes_do_not_raise(self, engine):
        """Test conditions on absent attributes fail quietly."""
        engine.add_rule(create_policy_rule(conditions=[
            {"attribute": "resource.attributes.area", "operator": "greater_than", "value": 1000},
            {"attribute": "resource.attributes.name", "operator": "regex", "value": "(["},
        ]))

        decision = engine.evaluate(create_access_request())

        assert decision.decision == Decision.NOT_APPLICABLE

    def test_request_is_not_mutated(self, engine, access_request):
        """Test the engine leaves request mappings untouched."""
        engine.add_rule(create_policy_rule())
        snapshot = {**access_request}

        engine.evaluate(access_request)

        assert access_request == snapshot


class TestMetrics:
    """Test cases for engine metrics."""

    def test_metrics_recorded(self, settings, access_request):
        """Test decisions, cache lookups and rule counts are exported."""
        metrics = MetricsCollector("policy")
        engine = PolicyEngine([create_policy_rule()], settings=settings, metrics=metrics)

        engine.evaluate(access_request)
        engine.evaluate(access_request)

        assert metrics.get_sample_value("policy_decisions_total", {"decision": "allow"}) == 2
        assert metrics.get_sample_value("policy_cache_lookups_total", {"result": "hit"}) == 1
        assert metrics.get_sample_value("policy_cache_lookups_total", {"result": "miss"}) == 1
        assert metrics.get_sample_value("policy_active_rules") == 1
        assert metrics.get_sample_value("policy_evaluation_duration_seconds_count") == 2

        engine.add_rule(create_policy_rule("second"))
        assert metrics.get_sample_value("policy_active_rules") == 2


class TestLoggingContext:
    """Test cases for correlation context during evaluation."""

    def test_request_ids_bound_while_deciding(self, settings):
        """Test rule checks run with the request and subject ids bound."""
        seen = []

        class RecordingMatcher(RuleMatcher):
            def is_applicable(self, rule, request):
                seen.append((request_id_var.get(), subject_id_var.get()))
                return super().is_applicable(rule, request)

        engine = PolicyEngine(
            [create_policy_rule()], settings=settings, matcher=RecordingMatcher(settings)
        )
        request = create_access_request(id="req-42", subject_id="user-7")

        engine.evaluate(request)

        assert seen == [("req-42", "user-7")]
        assert request_id_var.get() is None
        assert subject_id_var.get() is None
