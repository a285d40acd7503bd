"""Policy gating and error translation in BaseAgentAdapter.execute."""

from __future__ import annotations

from pathlib import Path
from typing import ClassVar

import pytest

from hachiko.agents.base import AgentInput, AgentResult, BaseAgentAdapter, ensure_disjoint
from hachiko.agents.mock import MockAgentAdapter
from hachiko.errors import BackendError, SandboxUnavailableError
from hachiko.policy.engine import PolicyConfig, PolicyEngine


class _RaisingAdapter(BaseAgentAdapter):
    kind: ClassVar[str] = "raising"

    def __init__(self, error: BaseException, **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.error = error
        self.calls = 0

    async def validate(self) -> bool:
        return True

    def get_config(self) -> dict[str, object]:
        return {"name": self.name}

    async def _run(self, agent_input: AgentInput) -> AgentResult:
        self.calls += 1
        raise self.error


def _input(repo: Path, *files: str) -> AgentInput:
    return AgentInput(plan_id="p", step_id="1", prompt="go", files=files, repo_path=repo)


async def test_blocked_secret_path_denies_with_zero_mutations(tmp_path: Path) -> None:
    (tmp_path / "secrets").mkdir()
    (tmp_path / "src").mkdir()
    secret = tmp_path / "secrets" / "api.key"
    source = tmp_path / "src" / "ok.ts"
    secret.write_text("hunter2", encoding="utf-8")
    source.write_text("ok", encoding="utf-8")
    random_calls: list[int] = []

    def random_fn() -> float:
        random_calls.append(1)
        return 0.0

    adapter = MockAgentAdapter(
        policy=PolicyEngine(PolicyConfig(blocked_paths=("secrets/*",))),
        random_fn=random_fn,
        execution_time_ms=0,
    )

    result = await adapter.execute(_input(tmp_path, "secrets/api.key", "src/ok.ts"))

    assert result.success is False
    assert result.exit_code == 1
    assert result.error == "Policy violations: Access to blocked path: secrets/api.key"
    assert result.changed_files == ()
    assert secret.read_text(encoding="utf-8") == "hunter2"
    assert source.read_text(encoding="utf-8") == "ok"
    assert random_calls == []


async def test_every_violation_is_listed(tmp_path: Path) -> None:
    adapter = MockAgentAdapter(
        policy=PolicyEngine(PolicyConfig(allowed_paths=("src/**",), blocked_paths=("**/*.sh",))),
        execution_time_ms=0,
    )

    result = await adapter.execute(_input(tmp_path, "scripts/deploy.sh", "../outside.txt"))

    assert result.error == (
        "Policy violations: Access to blocked path: scripts/deploy.sh, "
        "Access to non-allowlisted path: scripts/deploy.sh, "
        "Access outside repository: ../outside.txt"
    )


async def test_backend_error_keeps_its_exit_code(tmp_path: Path) -> None:
    adapter = _RaisingAdapter(BackendError("agent exited", backend="raising", exit_code=3))

    result = await adapter.execute(_input(tmp_path))

    assert result.exit_code == 3
    assert result.error == "agent exited"
    assert adapter.calls == 1


async def test_unexpected_error_maps_to_minus_one(tmp_path: Path) -> None:
    adapter = _RaisingAdapter(RuntimeError("boom"))

    result = await adapter.execute(_input(tmp_path))

    assert result.success is False
    assert result.exit_code == -1
    assert result.error == "RuntimeError: boom"
    assert result.execution_time_ms >= 0


async def test_sandbox_unavailable_propagates(tmp_path: Path) -> None:
    adapter = _RaisingAdapter(SandboxUnavailableError("no docker", runtime="docker"))

    with pytest.raises(SandboxUnavailableError):
        await adapter.execute(_input(tmp_path))


async def test_denied_input_never_reaches_backend(tmp_path: Path) -> None:
    adapter = _RaisingAdapter(
        RuntimeError("unreachable"),
        policy=PolicyEngine(PolicyConfig(blocked_paths=(".github/workflows/**",))),
    )

    result = await adapter.execute(_input(tmp_path, ".github/workflows/ci.yml"))

    assert result.exit_code == 1
    assert adapter.calls == 0


def test_agent_result_invariants() -> None:
    with pytest.raises(ValueError, match="overlap"):
        AgentResult(success=True, modified_files=("a",), created_files=("a",))
    with pytest.raises(ValueError, match="error"):
        AgentResult(success=False, exit_code=1)
    with pytest.raises(ValueError, match="exit_code"):
        AgentResult(success=True, exit_code=2)
    with pytest.raises(ValueError, match="successful"):
        AgentResult(success=True, error="nope")


def test_ensure_disjoint_prefers_created_then_deleted() -> None:
    modified, created, deleted = ensure_disjoint(["a", "b", "c", "a"], ["b"], ["c", "d"])

    assert modified == ("a",)
    assert created == ("b",)
    assert deleted == ("c", "d")


def test_agent_input_dedupes_files_and_drops_escaping_paths(tmp_path: Path) -> None:
    agent_input = _input(tmp_path, "src/a.py", "src/a.py", str(tmp_path / "src" / "b.py"), "../x")

    assert agent_input.files == ("src/a.py", str(tmp_path / "src" / "b.py"), "../x")
    assert agent_input.relative_files() == ("src/a.py", "src/b.py")
