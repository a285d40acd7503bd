"""Unit tests for the session-polling cloud agent."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from hachiko.agents.base import AgentInput
from hachiko.agents.cloud_devin import CloudDevinAdapter

_ENV = {"DEVIN_API_KEY": "devin-secret"}


@dataclass(slots=True)
class _SleepRecorder:
    calls: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


@dataclass(slots=True)
class _SessionServer:
    """Answers session creation once, then serves scripted poll states."""

    poll_states: deque[dict[str, object]]
    session_id: str | None = "sess-42"
    requests: list[httpx.Request] = field(default_factory=list)
    last_state: dict[str, object] = field(default_factory=lambda: {"status": "running"})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/v1/sessions":
            body = {"session_id": self.session_id} if self.session_id else {}
            return httpx.Response(201, json=body)
        if request.method == "GET" and request.url.path == f"/v1/sessions/{self.session_id}":
            if self.poll_states:
                self.last_state = self.poll_states.popleft()
            return httpx.Response(200, json=self.last_state)
        if request.url.path == "/v1/health":
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(404)


def _adapter(server: _SessionServer, **kwargs: object) -> CloudDevinAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    options: dict[str, object] = {"client": client, "environ": _ENV, "sleep": _SleepRecorder()}
    options.update(kwargs)
    return CloudDevinAdapter(**options)  # type: ignore[arg-type]


def _input(repo: Path, **kwargs: object) -> AgentInput:
    options: dict[str, object] = {
        "plan_id": "react-18",
        "step_id": "2",
        "prompt": "Use createRoot",
        "files": ("src/index.tsx", "src/App.tsx"),
        "repo_path": repo,
        "chunk": "src",
    }
    options.update(kwargs)
    return AgentInput(**options)  # type: ignore[arg-type]


async def test_completed_session_reports_deduplicated_changes(tmp_path: Path) -> None:
    server = _SessionServer(
        deque(
            [
                {"status": "running"},
                {
                    "status": "completed",
                    "output": {
                        "files_modified": ["src/index.tsx", "src/App.tsx"],
                        "files_created": ["src/App.tsx"],
                        "files_deleted": [],
                        "summary": "Switched to createRoot",
                    },
                },
            ]
        )
    )
    sleep = _SleepRecorder()
    adapter = _adapter(server, webhook_url="https://hooks.example/devin", sleep=sleep)

    result = await adapter.execute(_input(tmp_path))

    assert result.success is True
    assert result.modified_files == ("src/index.tsx",)
    assert result.created_files == ("src/App.tsx",)
    assert result.output == "Switched to createRoot"
    assert sleep.calls == [5.0]

    create = server.requests[0]
    assert create.headers["Authorization"] == "Bearer devin-secret"
    payload = json.loads(create.content)
    assert payload["files"] == ["src/index.tsx", "src/App.tsx"]
    assert payload["webhook_url"] == "https://hooks.example/devin"
    assert payload["metadata"] == {"plan_id": "react-18", "step_id": "2", "chunk": "src"}
    assert "Use createRoot" in payload["prompt"]


async def test_failed_session_is_exit_code_one(tmp_path: Path) -> None:
    server = _SessionServer(
        deque([{"status": "failed", "output": {"error": "could not build", "summary": "gave up"}}])
    )

    result = await _adapter(server).execute(_input(tmp_path))

    assert result.success is False
    assert result.exit_code == 1
    assert result.error == "could not build"
    assert result.output == "gave up"


async def test_cancelled_session_without_error_text(tmp_path: Path) -> None:
    server = _SessionServer(deque([{"status": "cancelled"}]))

    result = await _adapter(server).execute(_input(tmp_path))

    assert result.exit_code == 1
    assert result.error == "session sess-42 ended with status cancelled"


async def test_poll_interval_grows_up_to_the_cap(tmp_path: Path) -> None:
    server = _SessionServer(
        deque([{"status": "running"}] * 4 + [{"status": "completed", "output": {}}])
    )
    sleep = _SleepRecorder()
    adapter = _adapter(
        server,
        sleep=sleep,
        poll_interval_seconds=2.0,
        max_poll_interval_seconds=4.0,
    )

    result = await adapter.execute(_input(tmp_path))

    assert result.success is True
    assert sleep.calls == [2.0, 3.0, 4.0, 4.0]


async def test_session_that_never_finishes_times_out(tmp_path: Path) -> None:
    server = _SessionServer(deque())

    async def real_sleep(seconds: float) -> None:
        await asyncio.sleep(seconds)

    adapter = _adapter(server, sleep=real_sleep, poll_interval_seconds=0.01)

    result = await adapter.execute(_input(tmp_path, timeout_seconds=0.1))

    assert result.success is False
    assert result.exit_code == -1
    assert "did not finish within 0.1 seconds" in (result.error or "")


async def test_missing_session_id_is_a_backend_failure(tmp_path: Path) -> None:
    server = _SessionServer(deque(), session_id=None)

    result = await _adapter(server).execute(_input(tmp_path))

    assert result.exit_code == -1
    assert result.error == "session response is missing session_id"


async def test_validate_hits_health_endpoint() -> None:
    server = _SessionServer(deque())

    assert await _adapter(server).validate() is True
    assert server.requests[0].url.path == "/v1/health"


def test_config_is_log_safe() -> None:
    config = CloudDevinAdapter(environ=_ENV, webhook_url="https://hooks.example").get_config()

    assert config["has_api_key"] is True
    assert config["has_webhook"] is True
    assert config["api_version"] == "v1"
    assert "devin-secret" not in json.dumps(config)
