"""
Policy decision engine for the Policy Service.
"""

import threading
import time
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from shared.config import PolicySettings, get_settings
from shared.errors import RequestValidationError, RuleValidationError, SimulationError
from shared.logging import bind_request_context, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from ..cache.decision_cache import DecisionCache, make_cache_key
from .matcher import RuleMatcher
from .models import (
    AccessRequest, AppliedRule, Decision, EffectType, PolicyDecision, PolicyEffect,
    PolicyRule, RequestInput, RuleEvaluation, RuleInput, RuleType, SimulationReport
)


def _validation_details(error: ValidationError) -> Dict[str, Any]:
    return {
        "errors": [
            {"loc": list(item["loc"]), "msg": item["msg"], "type": item["type"]}
            for item in error.errors()
        ]
    }


def coerce_rule(rule: RuleInput) -> PolicyRule:
    """Accept a PolicyRule or a mapping with wire or Python field names."""
    if isinstance(rule, PolicyRule):
        return rule
    if not isinstance(rule, Mapping):
        raise RuleValidationError(f"Unsupported rule type: {type(rule).__name__}")
    try:
        return PolicyRule.model_validate(dict(rule))
    except ValidationError as e:
        raise RuleValidationError(
            f"Invalid policy rule '{rule.get('id', '?')}'", _validation_details(e)
        ) from e


def coerce_request(request: RequestInput) -> AccessRequest:
    """Accept an AccessRequest or a mapping with wire or Python field names."""
    if isinstance(request, AccessRequest):
        return request
    if not isinstance(request, Mapping):
        raise RequestValidationError(f"Unsupported request type: {type(request).__name__}")
    try:
        return AccessRequest.model_validate(dict(request))
    except ValidationError as e:
        raise RequestValidationError(
            f"Invalid access request '{request.get('id', '?')}'", _validation_details(e)
        ) from e


def _sorted_rules(rules: List[PolicyRule]) -> Tuple[PolicyRule, ...]:
    # sorted() is stable: equal priorities keep insertion order
    return tuple(sorted(rules, key=lambda r: r.priority, reverse=True))


class PolicyEngine:
    """Attribute-based policy decision engine.

    Rules are walked from highest to lowest priority. The first applicable
    rule fixes the decision. An applicable deny rule is final: it overrides
    an allow fixed by a higher-priority rule and stops evaluation, so no
    later rule contributes effects. After an allow, evaluation continues to
    pool effects from the remaining applicable rules.

    The rule set is an immutable snapshot swapped under a writer lock, so
    concurrent evaluations never block each other or observe a half-applied
    mutation. Every mutation starts a new generation; cached decisions from
    earlier generations are never served.
    """

    def __init__(
        self,
        rules: Optional[Iterable[RuleInput]] = None,
        *,
        settings: Optional[PolicySettings] = None,
        cache: Optional[DecisionCache] = None,
        metrics: Optional[MetricsCollector] = None,
        matcher: Optional[RuleMatcher] = None
    ):
        self.settings = settings or get_settings()
        self.logger = get_logger("policy.engine")
        if metrics is None and self.settings.metrics_enabled:
            metrics = get_metrics_collector("policy")
        self.metrics = metrics
        self.matcher = matcher or RuleMatcher(self.settings)

        if cache is None and self.settings.decision_cache_enabled:
            cache = DecisionCache(
                ttl_seconds=self.settings.decision_cache_ttl_seconds,
                max_entries=self.settings.decision_cache_max_entries
            )
        self.cache = cache

        self._write_lock = threading.Lock()
        staged: List[PolicyRule] = []
        for rule in rules or []:
            self._upsert(staged, coerce_rule(rule))
        self._state: Tuple[Tuple[PolicyRule, ...], int] = (_sorted_rules(staged), 0)
        self._record_active_rules()

    @property
    def rules(self) -> Tuple[PolicyRule, ...]:
        """Current rules in evaluation order."""
        return self._state[0]

    def evaluate(self, request: RequestInput) -> PolicyDecision:
        """Evaluate an access request against the rule set."""
        lookup_start = time.perf_counter()
        request = self._coerce(coerce_request, request)
        rules, generation = self._state
        cache_key = (generation,) + make_cache_key(request)

        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                cached.evaluation_time = (time.perf_counter() - lookup_start) * 1000
                cached.cached = True
                self._record_cache_lookup("hit")
                self._record_decision(cached)
                return cached
            self._record_cache_lookup("miss")

        with bind_request_context(request.id, request.subject.id):
            start_time = time.perf_counter()
            decision = self._decide(rules, request)
            decision.evaluation_time = (time.perf_counter() - start_time) * 1000

            self.logger.debug(
                "Policy decision",
                action=request.action.type,
                resource_id=request.resource.id,
                decision=decision.decision.value,
                applied_rules=[r.rule_id for r in decision.applied_rules],
                evaluation_time_ms=decision.evaluation_time
            )

        if self.cache is not None:
            self.cache.set(cache_key, decision)

        self._record_decision(decision)
        return decision

    def _decide(self, rules: Iterable[PolicyRule], request: AccessRequest) -> PolicyDecision:
        applied_rules: List[AppliedRule] = []
        effects: Dict[EffectType, List[PolicyEffect]] = {effect_type: [] for effect_type in EffectType}
        final_decision = Decision.NOT_APPLICABLE
        reason = "No applicable rules found"

        for rule in rules:
            if not rule.is_active:
                continue

            if not self.matcher.is_applicable(rule, request).applicable:
                continue

            applied_rules.append(AppliedRule(
                rule_id=rule.id,
                rule_name=rule.name,
                decision=rule.type,
                priority=rule.priority
            ))
            for effect in rule.effects:
                effects[effect.type].append(effect.model_copy(deep=True))

            if rule.type == RuleType.DENY:
                final_decision = Decision.DENY
                reason = f"Access denied by rule '{rule.name}': {rule.description}"
                break

            if final_decision == Decision.NOT_APPLICABLE:
                final_decision = Decision.ALLOW
                reason = f"Rule '{rule.name}' applied: {rule.description}"

        return PolicyDecision(
            decision=final_decision,
            applied_rules=applied_rules,
            obligations=effects[EffectType.OBLIGATION],
            advice=effects[EffectType.ADVICE],
            information=effects[EffectType.INFORMATION],
            reason=reason
        )

    def add_rule(self, rule: RuleInput) -> PolicyRule:
        """Add a rule, replacing any rule with the same id."""
        rule = self._coerce(coerce_rule, rule)
        with self._write_lock:
            rules, generation = self._state
            staged = list(rules)
            replaced = self._upsert(staged, rule)
            self._state = (_sorted_rules(staged), generation + 1)
            self._invalidate_cache()

        self._record_active_rules()
        self.logger.info(
            "Rule replaced" if replaced else "Rule added",
            rule_id=rule.id,
            name=rule.name,
            priority=rule.priority
        )
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        """Remove a rule by id; returns whether anything was removed."""
        with self._write_lock:
            rules, generation = self._state
            remaining = tuple(r for r in rules if r.id != rule_id)
            if len(remaining) == len(rules):
                return False
            self._state = (remaining, generation + 1)
            self._invalidate_cache()

        self._record_active_rules()
        self.logger.info("Rule removed", rule_id=rule_id)
        return True

    def clear_all_rules(self) -> None:
        """Remove every rule."""
        with self._write_lock:
            _, generation = self._state
            self._state = ((), generation + 1)
            self._invalidate_cache()

        self._record_active_rules()
        self.logger.info("All rules cleared")

    def get_rule(self, rule_id: str) -> Optional[PolicyRule]:
        """Get a rule by id."""
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def test_rule(self, rule: RuleInput, request: RequestInput) -> RuleEvaluation:
        """Trace a rule against a request without touching rules or cache."""
        return self.matcher.is_applicable(coerce_rule(rule), coerce_request(request))

    def get_rules_for_resource(self, resource_type: str) -> List[PolicyRule]:
        """Get active rules governing a resource type, in evaluation order."""
        return [
            rule for rule in self.rules
            if rule.is_active and any(resource.type == resource_type for resource in rule.resources)
        ]

    def simulate_policy(
        self,
        requests: Iterable[RequestInput],
        rules: Iterable[RuleInput]
    ) -> SimulationReport:
        """Evaluate requests against a candidate rule set.

        The live rule set and cache are not touched; a disposable engine
        with this engine's settings does the work.
        """
        try:
            candidate = PolicyEngine(rules, settings=self.settings)
            batch = [coerce_request(request) for request in requests]
        except (RuleValidationError, RequestValidationError) as e:
            raise SimulationError(e.message, {"cause": e.code, **e.details}) from e

        results = [candidate.evaluate(request) for request in batch]

        decisions = Counter(result.decision for result in results)
        rule_usage: Dict[str, int] = {}
        for result in results:
            for applied in result.applied_rules:
                rule_usage[applied.rule_id] = rule_usage.get(applied.rule_id, 0) + 1

        total_time = sum(result.evaluation_time for result in results)
        report = SimulationReport(
            total_requests=len(results),
            allowed=decisions[Decision.ALLOW],
            denied=decisions[Decision.DENY],
            not_applicable=decisions[Decision.NOT_APPLICABLE],
            average_evaluation_time=total_time / len(results) if results else 0.0,
            rule_usage=rule_usage
        )

        self.logger.info(
            "Policy simulation completed",
            total_requests=report.total_requests,
            allowed=report.allowed,
            denied=report.denied,
            not_applicable=report.not_applicable
        )
        return report

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        rules = self.rules
        active = [r for r in rules if r.is_active]
        return {
            "total_rules": len(rules),
            "active_rules": len(active),
            "inactive_rules": len(rules) - len(active),
            "resource_types": sorted({p.type for r in rules for p in r.resources}),
            "cache": self.cache.get_cache_stats() if self.cache is not None else None,
        }

    def _coerce(self, coerce, value):
        try:
            return coerce(value)
        except (RuleValidationError, RequestValidationError) as e:
            if self.metrics is not None:
                self.metrics.record_error(e.code)
            raise

    @staticmethod
    def _upsert(rules: List[PolicyRule], rule: PolicyRule) -> bool:
        for index, existing in enumerate(rules):
            if existing.id == rule.id:
                rules[index] = rule
                return True
        rules.append(rule)
        return False

    def _invalidate_cache(self):
        """Invalidate decision cache."""
        if self.cache is not None:
            self.cache.clear()

    def _record_decision(self, decision: PolicyDecision):
        if self.metrics is None:
            return
        self.metrics.increment_counter("policy_decisions_total", decision=decision.decision.value)
        self.metrics.observe_histogram("policy_evaluation_duration_seconds", decision.evaluation_time / 1000)

    def _record_cache_lookup(self, result: str):
        if self.metrics is not None:
            self.metrics.increment_counter("policy_cache_lookups_total", result=result)

    def _record_active_rules(self):
        if self.metrics is not None:
            self.metrics.set_gauge("policy_active_rules", len([r for r in self.rules if r.is_active]))
