"""
Policy service bootstrap for the Access Layer.
"""

from typing import Iterable, Optional

from shared.config import PolicySettings, get_settings
from shared.logging import configure_logging, get_logger
from shared.metrics import get_metrics_collector

from .rules.engine import PolicyEngine
from .rules.models import RuleInput
from .rules.templates import create_rule_from_template


def create_policy_engine(
    rules: Optional[Iterable[RuleInput]] = None,
    templates: Optional[Iterable[str]] = None,
    settings: Optional[PolicySettings] = None
) -> PolicyEngine:
    """Configure logging and metrics, then build an engine.

    ``templates`` names predefined templates to load; each becomes a rule
    whose id is the lower-cased template name.
    """
    settings = settings or get_settings()
    configure_logging("policy", settings.log_level)
    logger = get_logger("policy.main")

    metrics = get_metrics_collector("policy") if settings.metrics_enabled else None

    initial = list(rules or [])
    for template_name in templates or []:
        initial.append(create_rule_from_template(template_name, template_name.lower()))

    engine = PolicyEngine(initial, settings=settings, metrics=metrics)
    logger.info(
        "Policy engine created",
        env=settings.env,
        rules=len(engine.rules),
        cache_enabled=engine.cache is not None,
        metrics_enabled=metrics is not None
    )
    return engine
