"""Public observability primitives: structlog configuration and correlation scopes."""

from hachiko.observability.logging import (
    CORRELATION_KEYS,
    configure_logging,
    correlation_scope,
    get_correlation_context,
    redact_event,
    redact_value,
)

__all__ = [
    "CORRELATION_KEYS",
    "configure_logging",
    "correlation_scope",
    "get_correlation_context",
    "redact_event",
    "redact_value",
]
