"""
Unit tests for RuleMatcher.
"""

import pytest

from service_policy.app.rules.matcher import RuleMatcher, matches_action, matches_resource, matches_subject
from service_policy.app.rules.models import AccessRequest, PolicyRule
from shared.config import PolicySettings
from shared.test_helpers import create_access_request, create_policy_rule


def build_rule(**kwargs) -> PolicyRule:
    return PolicyRule.model_validate(create_policy_rule(**kwargs))


def build_request(**kwargs) -> AccessRequest:
    return AccessRequest.model_validate(create_access_request(**kwargs))


class TestPatternHelpers:
    """Test cases for subject/action/resource matching."""

    def test_subject_matches_id_or_role(self):
        """Test subject pattern matches the id or any role."""
        by_id = build_rule(subject_pattern="user-1*").subjects
        by_role = build_rule(subject_pattern="Admin").subjects

        assert matches_subject(by_id, build_request(subject_id="user-123").subject) is True
        assert matches_subject(by_role, build_request(roles=["Viewer", "admin"]).subject) is True
        assert matches_subject(by_role, build_request(roles=["Viewer"]).subject) is False

    def test_subject_type_must_match(self):
        """Test the subject type gates the pattern."""
        subjects = build_rule(subject_type="api_key", subject_pattern="*").subjects

        assert matches_subject(subjects, build_request(subject_type="user").subject) is False
        assert matches_subject(subjects, build_request(subject_type="api_key").subject) is True

    def test_action_any_of(self):
        """Test any listed action type matches."""
        actions = build_rule(actions=["read", "download"]).actions

        assert matches_action(actions, build_request(action="download").action) is True
        assert matches_action(actions, build_request(action="delete").action) is False

    def test_resource_type_and_pattern(self):
        """Test resource type and id pattern must both match."""
        resources = build_rule(resource_type="metadata", resource_pattern="metadata:well:*").resources

        assert matches_resource(resources, build_request(resource_id="metadata:well:9").resource) is True
        assert matches_resource(resources, build_request(resource_id="metadata:field:9").resource) is False
        assert matches_resource(
            resources, build_request(resource_id="metadata:well:9", resource_type="contract").resource
        ) is False

    def test_empty_lists_never_match(self):
        """Test a rule without patterns governs nothing."""
        request = build_request()

        assert matches_subject([], request.subject) is False
        assert matches_action([], request.action) is False
        assert matches_resource([], request.resource) is False


class TestRuleMatcher:
    """Test cases for RuleMatcher.is_applicable()."""

    @pytest.fixture
    def matcher(self):
        """Create RuleMatcher instance."""
        return RuleMatcher(PolicySettings(context_requirements_fail_closed=False))

    def test_applicable(self, matcher):
        """Test a fully matching rule."""
        rule = build_rule(conditions=[
            {"attribute": "resource.type", "operator": "equals", "value": "metadata"},
        ])
        result = matcher.is_applicable(rule, build_request())

        assert result.applicable is True
        assert result.reason == "All conditions met"
        assert len(result.condition_results) == 1

    @pytest.mark.parametrize("rule_kwargs,reason", [
        ({"subject_type": "service"}, "Subject pattern does not match request"),
        ({"actions": ["delete"]}, "Action does not match request"),
        ({"resource_pattern": "contract:*"}, "Resource pattern does not match request"),
    ])
    def test_pattern_mismatch(self, matcher, rule_kwargs, reason):
        """Test pattern stages short-circuit without condition results."""
        result = matcher.is_applicable(build_rule(**rule_kwargs), build_request())

        assert result.applicable is False
        assert result.reason == reason
        assert result.condition_results == []

    def test_condition_failure_traces_all_conditions(self, matcher):
        """Test every condition is traced even when one fails."""
        rule = build_rule(conditions=[
            {"attribute": "resource.attributes.area", "operator": "greater_than", "value": 1000},
            {"attribute": "resource.type", "operator": "equals", "value": "metadata"},
        ])
        result = matcher.is_applicable(rule, build_request(resource_attributes={"area": 10}))

        assert result.applicable is False
        assert result.reason.startswith("Condition failed:")
        assert [r.result for r in result.condition_results] == [False, True]

    def test_time_restriction(self, matcher):
        """Test weekday-only rules do not apply on weekends."""
        rule = build_rule(timeRestrictions={"daysOfWeek": [1, 2, 3, 4, 5]})

        assert matcher.is_applicable(rule, build_request(timestamp="2024-01-15T10:00:00Z")).applicable is True

        weekend = matcher.is_applicable(rule, build_request(timestamp="2024-01-13T10:00:00Z"))
        assert weekend.applicable is False
        assert weekend.reason == "Time restriction not satisfied"

    def test_ip_restriction(self, matcher):
        """Test IP allow-list stage."""
        rule = build_rule(ipRestrictions=["192.168.0.0/16"])

        result = matcher.is_applicable(rule, build_request(ip="10.1.2.3"))
        assert result.applicable is False
        assert result.reason == "IP restriction not satisfied"
        assert matcher.is_applicable(rule, build_request(ip="192.168.4.4")).applicable is True

    def test_context_requirements(self, matcher):
        """Test context requirement stage."""
        rule = build_rule(contextRequirements=[{"type": "mfa"}])

        result = matcher.is_applicable(rule, build_request())
        assert result.applicable is False
        assert result.reason == "Context requirements not satisfied"
        assert matcher.is_applicable(rule, build_request(context={"mfaVerified": True})).applicable is True
