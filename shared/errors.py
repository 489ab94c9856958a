"""
Shared error handling for the Access Layer policy engine.

Only input validation raises. Rule evaluation itself degrades failures
into diagnostic reasons and never raises for a well-typed request.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class PolicyEngineException(Exception):
    """Base exception for policy engine errors."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class RuleValidationError(PolicyEngineException):
    """A policy rule definition is malformed."""

    def __init__(self, message: str = "Rule validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("RULE_VALIDATION_ERROR", message, details)


class RequestValidationError(PolicyEngineException):
    """An access request is malformed."""

    def __init__(self, message: str = "Request validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("REQUEST_VALIDATION_ERROR", message, details)


class TemplateNotFoundError(PolicyEngineException):
    """Unknown policy template."""

    def __init__(self, template_name: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("TEMPLATE_NOT_FOUND", f"Unknown policy template: {template_name}", details)


class SimulationError(PolicyEngineException):
    """Policy simulation could not be run."""

    def __init__(self, message: str = "Policy simulation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SIMULATION_ERROR", message, details)
