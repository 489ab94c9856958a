"""
Policy data models for the Policy Service.

Wire names are camelCase (``isActive``, ``timeRestrictions``...); Python
code uses snake_case. Both spellings are accepted on input.
"""

from typing import Dict, Any, Optional, List, Union
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RuleType(str, Enum):
    """Rule effect on the decision."""
    ALLOW = "allow"
    DENY = "deny"


class Decision(str, Enum):
    """Final policy decision."""
    ALLOW = "allow"
    DENY = "deny"
    NOT_APPLICABLE = "not_applicable"


class ConditionOperator(str, Enum):
    """Condition operators."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"


class ConditionType(str, Enum):
    """Condition categories (informational only)."""
    ATTRIBUTE = "attribute"
    TIME = "time"
    LOCATION = "location"
    CONTEXT = "context"
    CUSTOM = "custom"


class EffectType(str, Enum):
    """Rule effect categories."""
    OBLIGATION = "obligation"
    ADVICE = "advice"
    INFORMATION = "information"


class ContextRequirementType(str, Enum):
    """Contextual requirement types."""
    MFA = "mfa"
    VPN = "vpn"
    DEVICE_TRUST = "device_trust"
    SESSION_AGE = "session_age"
    APPROVAL = "approval"
    CUSTOM = "custom"


class PolicyModel(BaseModel):
    """Base model accepting camelCase and snake_case field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using wire (camelCase) names."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# Type/operator fields are plain strings: an unknown value simply never
# matches instead of rejecting the whole rule.

class PolicyCondition(PolicyModel):
    """Attribute condition; all conditions of a rule must hold."""
    type: str = ConditionType.ATTRIBUTE.value
    operator: str
    attribute: str
    value: Any = None
    case_sensitive: bool = False


class PolicyAction(PolicyModel):
    """Action a rule governs."""
    type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ResourcePattern(PolicyModel):
    """Glob pattern over resource identifiers of one resource type."""
    type: str
    pattern: str
    attributes: Optional[Dict[str, Any]] = None


class SubjectPattern(PolicyModel):
    """Glob pattern over subject ids and roles of one subject type."""
    type: str
    pattern: str
    attributes: Optional[Dict[str, Any]] = None


class PolicyEffect(PolicyModel):
    """Non-authoritative side information carried to the caller."""
    type: EffectType
    action: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class TimeRestriction(PolicyModel):
    """Time-of-day, weekday and calendar validity window."""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    days_of_week: Optional[List[int]] = None
    timezone: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None


class ContextRequirement(PolicyModel):
    """Contextual requirement such as MFA or VPN."""
    type: str
    value: Any = None
    description: Optional[str] = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PolicyRule(PolicyModel):
    """Access policy rule."""
    id: str
    name: str
    description: str = ""
    type: RuleType
    priority: int = 0
    conditions: List[PolicyCondition] = Field(default_factory=list)
    actions: List[PolicyAction] = Field(default_factory=list)
    resources: List[ResourcePattern] = Field(default_factory=list)
    subjects: List[SubjectPattern] = Field(default_factory=list)
    effects: List[PolicyEffect] = Field(default_factory=list)
    time_restrictions: Optional[TimeRestriction] = None
    ip_restrictions: Optional[List[str]] = None
    context_requirements: Optional[List[ContextRequirement]] = None
    created_by: str = "system"
    created_at: str = Field(default_factory=_utc_now_iso)
    is_active: bool = True


class Subject(PolicyModel):
    """Actor requesting access."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    roles: List[str] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class Action(PolicyModel):
    """Requested action."""
    model_config = ConfigDict(frozen=True)

    type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class Resource(PolicyModel):
    """Protected resource."""
    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    attributes: Dict[str, Any] = Field(default_factory=dict)


class Location(PolicyModel):
    """Request origin location."""
    model_config = ConfigDict(frozen=True)

    country: str
    region: str


class RequestContext(PolicyModel):
    """Request context collected by the enforcement point."""
    model_config = ConfigDict(frozen=True)

    timestamp: str
    ip: str
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    session_started_at: Optional[str] = None
    mfa_verified: Optional[bool] = None
    vpn_connected: Optional[bool] = None
    device_trusted: Optional[bool] = None
    location: Optional[Location] = None

    @field_validator("timestamp", "session_started_at", mode="before")
    @classmethod
    def _datetime_to_iso(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        return value


class AccessRequest(PolicyModel):
    """Immutable evaluation input."""
    model_config = ConfigDict(frozen=True)

    id: str
    subject: Subject
    action: Action
    resource: Resource
    context: RequestContext
    environment: Dict[str, Any] = Field(default_factory=dict)


class AppliedRule(PolicyModel):
    """Rule that applied during an evaluation."""
    rule_id: str
    rule_name: str
    decision: RuleType
    priority: int


class PolicyDecision(PolicyModel):
    """Result of policy evaluation."""
    decision: Decision
    applied_rules: List[AppliedRule] = Field(default_factory=list)
    obligations: List[PolicyEffect] = Field(default_factory=list)
    advice: List[PolicyEffect] = Field(default_factory=list)
    information: List[PolicyEffect] = Field(default_factory=list)
    reason: str
    evaluation_time: float = 0.0  # milliseconds
    cached: bool = False

    @property
    def allowed(self) -> bool:
        """Only an explicit allow permits access."""
        return self.decision == Decision.ALLOW


class SimulationReport(PolicyModel):
    """Aggregate of a what-if evaluation over a batch of requests."""
    total_requests: int
    allowed: int
    denied: int
    not_applicable: int
    average_evaluation_time: float
    rule_usage: Dict[str, int] = Field(default_factory=dict)


@dataclass
class ConditionResult:
    """Outcome of a single condition."""
    condition: PolicyCondition
    result: bool
    reason: str


@dataclass
class RuleEvaluation:
    """Outcome of matching one rule against one request."""
    applicable: bool
    reason: str
    condition_results: List[ConditionResult] = field(default_factory=list)


RuleInput = Union[PolicyRule, Dict[str, Any]]
RequestInput = Union[AccessRequest, Dict[str, Any]]
