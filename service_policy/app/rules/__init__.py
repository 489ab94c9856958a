"""
Rules engine package.

Defines the policy rule model and the evaluation engine used by the
Policy Service. Rules combine glob patterns over subjects, actions and
resources with attribute conditions and contextual constraints; the
engine resolves conflicts by priority with deny-override and returns a
decision together with the effects of every applied rule.

Modules of interest:
- models: pydantic models for rules, requests and decisions.
- patterns: glob matching of identifiers.
- conditions: attribute path resolution and comparison operators.
- constraints: time windows, IP allow-lists and context requirements.
- matcher: per-rule applicability with a diagnostic trace.
- engine: priority-ordered evaluation, mutation and simulation.
- templates: predefined rule templates.
"""

from .engine import PolicyEngine
from .matcher import RuleMatcher
from .models import (
    AccessRequest, Decision, PolicyDecision, PolicyRule, RuleEvaluation, SimulationReport
)
from .patterns import matches
from .templates import POLICY_TEMPLATES, create_rule_from_template

__all__ = [
    "AccessRequest",
    "Decision",
    "POLICY_TEMPLATES",
    "PolicyDecision",
    "PolicyEngine",
    "PolicyRule",
    "RuleEvaluation",
    "RuleMatcher",
    "SimulationReport",
    "create_rule_from_template",
    "matches",
]
