"""
Predefined policy rule templates.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Dict

from pydantic.alias_generators import to_camel

from shared.errors import TemplateNotFoundError
from .engine import coerce_rule
from .models import PolicyRule


POLICY_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "KKKS_DATA_ACCESS": {
        "name": "KKKS Data Provider Access",
        "description": "KKKS users can only access their own organization data",
        "type": "allow",
        "priority": 100,
        "conditions": [
            {
                "type": "attribute",
                "operator": "equals",
                "attribute": "subject.attributes.organization",
                "value": "{resource.attributes.operator}",
            },
        ],
        "actions": [
            {"type": "read"},
            {"type": "write"},
            {"type": "update"},
        ],
        "resources": [
            {"type": "metadata", "pattern": "*"},
        ],
        "subjects": [
            {"type": "role", "pattern": "KKKS-Provider"},
        ],
        "effects": [],
    },
    "SKK_READ_ONLY": {
        "name": "SKK Migas Read Access",
        "description": "SKK Migas users have read-only access to all approved data",
        "type": "allow",
        "priority": 90,
        "conditions": [
            {
                "type": "attribute",
                "operator": "equals",
                "attribute": "resource.attributes.approvalStatus",
                "value": "approved",
            },
        ],
        "actions": [
            {"type": "read"},
            {"type": "download"},
        ],
        "resources": [
            {"type": "metadata", "pattern": "*"},
        ],
        "subjects": [
            {"type": "role", "pattern": "SKK-Consumer"},
        ],
        "effects": [
            {
                "type": "obligation",
                "action": "log_access",
                "parameters": {"level": "info"},
            },
        ],
    },
    "CONFIDENTIAL_DATA_MFA": {
        "name": "Confidential Data MFA Required",
        "description": "Access to confidential data requires MFA verification",
        "type": "deny",
        "priority": 200,
        "conditions": [
            {
                "type": "attribute",
                "operator": "equals",
                "attribute": "resource.attributes.dataClassification",
                "value": "Confidential",
            },
        ],
        "actions": [
            {"type": "read"},
            {"type": "download"},
            {"type": "export"},
        ],
        "resources": [
            {"type": "metadata", "pattern": "*"},
        ],
        "subjects": [
            {"type": "user", "pattern": "*"},
        ],
        "effects": [],
        "contextRequirements": [
            {"type": "mfa", "description": "Multi-factor authentication required"},
        ],
    },
}


def create_rule_from_template(
    template_name: str,
    rule_id: str,
    created_by: str = "system",
    **overrides: Any
) -> PolicyRule:
    """Materialize a template into an active PolicyRule.

    ``overrides`` replace top-level template fields and may use either wire
    or Python names (``isActive`` / ``is_active``).
    """
    template = POLICY_TEMPLATES.get(template_name)
    if template is None:
        raise TemplateNotFoundError(template_name, {"available": sorted(POLICY_TEMPLATES)})

    definition = copy.deepcopy(template)
    definition.update({
        "id": rule_id,
        "createdBy": created_by,
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "isActive": True,
    })
    definition.update({
        (to_camel(key) if "_" in key else key): value
        for key, value in overrides.items()
    })
    return coerce_rule(definition)
