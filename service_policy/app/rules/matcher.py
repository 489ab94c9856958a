"""
Rule applicability checks.

A rule applies to a request when its subject, action and resource
patterns match and every condition and constraint holds. Checks run in
that order and stop at the first failure.
"""

from typing import List, Optional

from shared.config import PolicySettings
from .conditions import ConditionEvaluator
from .constraints import ConstraintChecker
from .models import (
    AccessRequest, Action, PolicyAction, PolicyRule, Resource, ResourcePattern,
    RuleEvaluation, Subject, SubjectPattern
)
from .patterns import matches


def matches_subject(patterns: List[SubjectPattern], subject: Subject) -> bool:
    """Subject type must match; the pattern may match the id or any role."""
    for pattern in patterns:
        if pattern.type != subject.type:
            continue
        if matches(pattern.pattern, subject.id):
            return True
        if any(matches(pattern.pattern, role) for role in subject.roles):
            return True
    return False


def matches_action(actions: List[PolicyAction], action: Action) -> bool:
    """Any listed action type equal to the requested one."""
    return any(candidate.type == action.type for candidate in actions)


def matches_resource(patterns: List[ResourcePattern], resource: Resource) -> bool:
    """Resource type must match and the pattern must match the resource id."""
    return any(
        pattern.type == resource.type and matches(pattern.pattern, resource.id)
        for pattern in patterns
    )


class RuleMatcher:
    """Determines whether a rule applies to an access request."""

    def __init__(
        self,
        settings: Optional[PolicySettings] = None,
        conditions: Optional[ConditionEvaluator] = None,
        constraints: Optional[ConstraintChecker] = None
    ):
        self.conditions = conditions or ConditionEvaluator()
        self.constraints = constraints or ConstraintChecker(settings)

    def is_applicable(self, rule: PolicyRule, request: AccessRequest) -> RuleEvaluation:
        """Match a rule against a request and return the diagnostic trace."""
        if not matches_subject(rule.subjects, request.subject):
            return RuleEvaluation(applicable=False, reason="Subject pattern does not match request")

        if not matches_action(rule.actions, request.action):
            return RuleEvaluation(applicable=False, reason="Action does not match request")

        if not matches_resource(rule.resources, request.resource):
            return RuleEvaluation(applicable=False, reason="Resource pattern does not match request")

        condition_results = self.conditions.evaluate_all(rule.conditions, request)
        failed = [result for result in condition_results if not result.result]
        if failed:
            return RuleEvaluation(
                applicable=False,
                reason=f"Condition failed: {failed[0].reason}",
                condition_results=condition_results
            )

        if not self.constraints.check_time_restrictions(rule.time_restrictions, request.context.timestamp):
            return RuleEvaluation(
                applicable=False,
                reason="Time restriction not satisfied",
                condition_results=condition_results
            )

        if not self.constraints.check_ip_restrictions(rule.ip_restrictions, request.context.ip):
            return RuleEvaluation(
                applicable=False,
                reason="IP restriction not satisfied",
                condition_results=condition_results
            )

        if not self.constraints.check_context_requirements(rule.context_requirements, request.context):
            return RuleEvaluation(
                applicable=False,
                reason="Context requirements not satisfied",
                condition_results=condition_results
            )

        return RuleEvaluation(
            applicable=True,
            reason="All conditions met",
            condition_results=condition_results
        )
