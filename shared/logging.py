"""
Shared logging configuration for the Access Layer policy engine.
"""

import sys
import structlog
import logging
from contextlib import contextmanager
from functools import partial
from typing import Any, Dict, Iterator, Optional
from contextvars import ContextVar

# Correlation context for the request being evaluated
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
subject_id_var: ContextVar[Optional[str]] = ContextVar('subject_id', default=None)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured JSON logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            partial(add_service_context, service_name=service_name),
            add_correlation_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_service_context(
    logger: Any,
    method_name: str,
    event_dict: Dict[str, Any],
    service_name: Optional[str] = None
) -> Dict[str, Any]:
    """Derive the service from a dotted logger name ("policy.engine" -> "policy")."""
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]
    elif service_name:
        event_dict["service"] = service_name

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the bound request and subject ids unless the event carries its own."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    subject_id = subject_id_var.get()
    if subject_id:
        event_dict.setdefault("subject_id", subject_id)

    return event_dict


@contextmanager
def bind_request_context(request_id: str, subject_id: Optional[str] = None) -> Iterator[None]:
    """Bind correlation ids for everything logged inside the block."""
    request_token = request_id_var.set(request_id)
    subject_token = subject_id_var.set(subject_id)
    try:
        yield
    finally:
        subject_id_var.reset(subject_token)
        request_id_var.reset(request_token)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
