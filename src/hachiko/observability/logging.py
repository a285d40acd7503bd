"""Structured logging setup for structlog with correlation context and redaction."""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from typing import Any, Final, TextIO

import structlog

_REDACTED_VALUE: Final[str] = "***REDACTED***"

CORRELATION_KEYS: Final[tuple[str, ...]] = ("plan_id", "step_id", "chunk", "run_id")

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
    "client_secret",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_OPENAI_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-[A-Za-z0-9_-]{12,}\b")

# Keys that only ever name an environment variable, never hold its value.
_ENV_NAME_SUFFIX: Final[str] = "_env"


def configure_logging(
    level: int | str = "INFO",
    *,
    json_output: bool = True,
    stream: TextIO | None = None,
) -> None:
    """
    Install the process-wide structlog pipeline.

    Processor order: context variables, log level, ISO timestamp, redaction,
    then the JSON (or console) renderer. Safe to call more than once.
    """
    renderer: Any = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_event,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_parse_log_level(level)),
        logger_factory=structlog.PrintLoggerFactory(
            file=stream if stream is not None else sys.stderr
        ),
        cache_logger_on_first_use=False,
    )


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields for every log event in scope."""
    bound = {key: value for key, value in fields.items() if value is not None}
    for key in bound:
        if key not in CORRELATION_KEYS:
            raise ValueError(f"unsupported correlation key {key!r}")
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_correlation_context() -> dict[str, Any]:
    return {
        key: value
        for key, value in structlog.contextvars.get_contextvars().items()
        if key in CORRELATION_KEYS
    }


def redact_event(
    _logger: Any,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """structlog processor masking secret-looking keys and inline credentials."""
    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def redact_value(value: Any) -> Any:
    return _redact_value(value, key_context=None)


def _redact_value(value: Any, *, key_context: str | None) -> Any:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, Mapping):
        return {key: _redact_value(item, key_context=str(key)) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, key_context=None) for item in value]
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    if key_lower.endswith(_ENV_NAME_SUFFIX):
        return False
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", text)
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", redacted
    )
    return _OPENAI_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


__all__ = [
    "CORRELATION_KEYS",
    "configure_logging",
    "correlation_scope",
    "get_correlation_context",
    "redact_event",
    "redact_value",
]
