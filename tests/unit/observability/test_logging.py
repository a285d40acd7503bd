"""Unit tests for structlog configuration, correlation scopes and redaction."""

from __future__ import annotations

import io
import json
from collections.abc import Iterator

import pytest
import structlog

from hachiko.observability.logging import (
    configure_logging,
    correlation_scope,
    get_correlation_context,
    redact_event,
    redact_value,
)


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _json_lines(stream: io.StringIO) -> list[dict[str, object]]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_json_output_carries_level_timestamp_and_correlation() -> None:
    stream = io.StringIO()
    configure_logging("INFO", json_output=True, stream=stream)
    logger = structlog.get_logger("hachiko.test")

    with correlation_scope(plan_id="react-hooks", step_id="convert", chunk=None):
        logger.info("step_started", attempt=1)
    logger.info("after_scope")

    first, second = _json_lines(stream)
    assert first["event"] == "step_started"
    assert first["level"] == "info"
    assert first["plan_id"] == "react-hooks"
    assert first["step_id"] == "convert"
    assert "chunk" not in first
    assert str(first["timestamp"]).startswith("20")
    assert "plan_id" not in second


def test_level_filtering() -> None:
    stream = io.StringIO()
    configure_logging("warning", stream=stream)
    logger = structlog.get_logger("hachiko.test")

    logger.info("quiet")
    logger.warning("loud")

    assert [entry["event"] for entry in _json_lines(stream)] == ["loud"]


def test_unknown_level_is_rejected() -> None:
    with pytest.raises(ValueError, match="unsupported logging level"):
        configure_logging("chatty")


def test_console_renderer_output_is_plain_text() -> None:
    stream = io.StringIO()
    configure_logging(json_output=False, stream=stream)

    structlog.get_logger("hachiko.test").info("console_event", plan_id="p")

    output = stream.getvalue()
    assert "console_event" in output
    assert not output.lstrip().startswith("{")


def test_secrets_never_reach_rendered_output() -> None:
    stream = io.StringIO()
    configure_logging(stream=stream)

    structlog.get_logger("hachiko.test").error(
        "agent_http_retry",
        api_key="sk-abcdefghijklmnop",
        api_key_env="OPENAI_API_KEY",
        detail="Authorization: Bearer abc.def.ghi failed",
        headers={"Authorization": "Bearer xyz"},
    )

    (entry,) = _json_lines(stream)
    rendered = stream.getvalue()
    assert entry["api_key"] == "***REDACTED***"
    assert entry["api_key_env"] == "OPENAI_API_KEY"
    assert entry["headers"] == {"Authorization": "***REDACTED***"}
    assert "abc.def.ghi" not in rendered
    assert "sk-abcdefghijklmnop" not in rendered


def test_redact_value_masks_inline_tokens() -> None:
    text = "token=abc123 and key sk-0123456789abcdef and Bearer q.w.e"

    redacted = redact_value(text)

    assert "abc123" not in redacted
    assert "sk-0123456789abcdef" not in redacted
    assert "q.w.e" not in redacted
    assert redact_value(["password: hunter2"]) == ["password:***REDACTED***"]
    assert redact_value(7) == 7


def test_redact_event_is_a_processor() -> None:
    event = {"event": "x", "client_secret": "s", "count": 2}

    assert redact_event(None, "info", event) == {
        "event": "x",
        "client_secret": "***REDACTED***",
        "count": 2,
    }


def test_correlation_scope_nests_and_restores() -> None:
    with correlation_scope(plan_id="outer"):
        with correlation_scope(plan_id="inner", run_id="9"):
            assert get_correlation_context() == {"plan_id": "inner", "run_id": "9"}
        assert get_correlation_context() == {"plan_id": "outer"}
    assert get_correlation_context() == {}


def test_correlation_scope_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError, match="unsupported correlation key"):
        with correlation_scope(user="alice"):
            pass
