"""Unit tests for HTTP error mapping and bounded retries."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

import httpx
import pytest

from hachiko.agents.http_client import BackoffConfig, map_http_error, run_with_retries
from hachiko.errors import BackendError


@dataclass(slots=True)
class _SleepRecorder:
    calls: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _status_error(status: int, body: str = "nope") -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://agents.example/v1/run")
    response = httpx.Response(status, request=request, text=body)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


@pytest.mark.parametrize(
    ("status", "retryable"),
    [(400, False), (401, False), (403, False), (404, False), (429, True), (500, True), (503, True)],
)
def test_status_codes_map_to_retry_classes(status: int, retryable: bool) -> None:
    error = map_http_error(_status_error(status), backend="cloud-codex")

    assert isinstance(error, BackendError)
    assert error.retryable is retryable
    assert error.http_status == status
    assert error.exit_code == -1
    assert error.backend == "cloud-codex"


def test_auth_failures_are_labelled() -> None:
    error = map_http_error(_status_error(401, "bad key"), backend="cloud-devin")

    assert error.detail == "authentication failed (401): bad key"


def test_transport_failures_are_retryable() -> None:
    request = httpx.Request("GET", "https://agents.example/")
    timeout = map_http_error(httpx.ReadTimeout("slow", request=request), backend="x")
    connect = map_http_error(httpx.ConnectError("refused", request=request), backend="x")

    assert timeout.retryable is True
    assert timeout.detail.startswith("request timed out")
    assert connect.retryable is True
    assert connect.detail.startswith("transport error")


def test_backoff_delays_are_bounded() -> None:
    config = BackoffConfig(max_retries=5, initial_delay_seconds=1.0, max_delay_seconds=3.0)

    assert [config.delay_for(n) for n in range(1, 5)] == [1.0, 2.0, 3.0, 3.0]
    with pytest.raises(ValueError):
        config.delay_for(0)


def test_backoff_jitter_uses_random_fn() -> None:
    config = BackoffConfig(initial_delay_seconds=2.0, jitter_ratio=0.5)

    assert config.delay_for(1, lambda: 0.0) == 1.0
    assert config.delay_for(1, lambda: 1.0) == 3.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries": -1},
        {"initial_delay_seconds": -0.1},
        {"multiplier": 0.5},
        {"initial_delay_seconds": 10.0, "max_delay_seconds": 1.0},
        {"jitter_ratio": 1.5},
    ],
)
def test_backoff_config_validation(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        BackoffConfig(**kwargs)


async def test_retryable_errors_are_retried_until_success() -> None:
    outcomes: deque[object] = deque([_status_error(503), _status_error(429), "ok"])
    sleep = _SleepRecorder()

    async def operation() -> object:
        outcome = outcomes.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    result = await run_with_retries(
        operation,
        backend="cloud-codex",
        backoff=BackoffConfig(max_retries=2, initial_delay_seconds=0.5),
        sleep=sleep,
    )

    assert result == "ok"
    assert sleep.calls == [0.5, 1.0]


async def test_retries_stop_at_the_limit() -> None:
    attempts: list[int] = []
    sleep = _SleepRecorder()

    async def operation() -> object:
        attempts.append(1)
        raise _status_error(502)

    with pytest.raises(BackendError) as excinfo:
        await run_with_retries(
            operation,
            backend="cloud-devin",
            backoff=BackoffConfig(max_retries=1),
            sleep=sleep,
        )

    assert len(attempts) == 2
    assert excinfo.value.http_status == 502
    assert isinstance(excinfo.value.__cause__, httpx.HTTPStatusError)


async def test_non_retryable_errors_fail_immediately() -> None:
    attempts: list[int] = []
    sleep = _SleepRecorder()

    async def operation() -> object:
        attempts.append(1)
        raise _status_error(403)

    with pytest.raises(BackendError):
        await run_with_retries(operation, backend="x", backoff=BackoffConfig(), sleep=sleep)

    assert attempts == [1]
    assert sleep.calls == []
