"""Unit tests for sandbox.container against a stub container runtime."""

from __future__ import annotations

import asyncio
import stat
import sys
from pathlib import Path

import pytest

from hachiko.constants import TIMEOUT_EXIT_CODE
from hachiko.errors import SandboxUnavailableError
from hachiko.sandbox.container import (
    CommandResult,
    ContainerConfig,
    ContainerExecutor,
    ContainerPhase,
)

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="stub runtime is a POSIX script")

_STUB_TEMPLATE = """#!/bin/sh
echo "$@" >> "{log}"
case "$1" in
  --version)
    {version}
    ;;
  run)
    {run}
    ;;
  exec)
    shift
    while [ "$1" = "--workdir" ] || [ "$1" = "-e" ]; do
      shift 2
    done
    shift
    exec "$@"
    ;;
  stop)
    {stop}
    ;;
esac
"""


def _stub_runtime(
    tmp_path: Path,
    *,
    version: str = "echo 'Docker version 0.0.0-stub'",
    run: str = "echo started",
    stop: str = "exit 0",
) -> tuple[Path, Path]:
    log = tmp_path / "runtime.log"
    script = tmp_path / "fake-docker"
    script.write_text(
        _STUB_TEMPLATE.format(log=log, version=version, run=run, stop=stop),
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script, log


def _calls(log: Path) -> list[str]:
    if not log.exists():
        return []
    return log.read_text(encoding="utf-8").splitlines()


@pytest.fixture
def dirs(tmp_path: Path) -> tuple[Path, Path]:
    workspace = tmp_path / "workspace"
    repo = tmp_path / "repo"
    workspace.mkdir()
    repo.mkdir()
    return workspace, repo


async def test_create_execute_destroy_lifecycle(tmp_path: Path, dirs: tuple[Path, Path]) -> None:
    script, log = _stub_runtime(tmp_path)
    workspace, repo = dirs
    executor = ContainerExecutor(executable=str(script))
    config = ContainerConfig(image="node:20", memory_limit_mb=512, cpu_limit=0.5, env={"A": "1"})

    context = await executor.create(config, workspace, repo)

    assert context.phase is ContainerPhase.CREATED
    assert context.container_id.startswith("hachiko-")
    run_call = next(call for call in _calls(log) if call.startswith("run "))
    assert f"--name {context.container_id}" in run_call
    assert "--read-only" in run_call
    assert "--cap-drop ALL" in run_call
    assert "--network none" in run_call
    assert "--memory 512m" in run_call
    assert "--cpus 0.5" in run_call
    assert f"-v {workspace.resolve()}:/workspace:rw" in run_call
    assert f"-v {repo.resolve()}:/repo:ro" in run_call
    assert run_call.endswith("-e A=1 node:20 sleep infinity")

    result = await executor.execute_in(context, ["echo", "hello"])

    assert result.exit_code == 0
    assert result.stdout == "hello\n"
    assert context.phase is ContainerPhase.RUNNING

    await executor.destroy(context.container_id)

    assert context.phase is ContainerPhase.DESTROYED
    assert executor.active_containers == ()
    with pytest.raises(ValueError):
        await executor.execute_in(context, ["echo", "again"])


async def test_destroy_is_idempotent(tmp_path: Path, dirs: tuple[Path, Path]) -> None:
    script, log = _stub_runtime(tmp_path)
    executor = ContainerExecutor(executable=str(script))
    context = await executor.create(ContainerConfig(image="alpine"), *dirs)

    first = await executor.destroy(context.container_id)
    second = await executor.destroy(context.container_id)
    unknown = await executor.destroy("hachiko-never-created")

    assert first is None and second is None and unknown is None
    stops = [call for call in _calls(log) if call.startswith("stop ")]
    assert stops == [f"stop {context.container_id}"]


async def test_destroy_failure_is_logged_not_raised(
    tmp_path: Path,
    dirs: tuple[Path, Path],
) -> None:
    script, _ = _stub_runtime(tmp_path, stop="echo 'no such container' >&2; exit 1")
    executor = ContainerExecutor(executable=str(script))
    context = await executor.create(ContainerConfig(image="alpine"), *dirs)

    await executor.destroy(context.container_id)

    assert context.phase is ContainerPhase.DESTROYED


async def test_create_fails_fast_when_runtime_missing(
    tmp_path: Path,
    dirs: tuple[Path, Path],
) -> None:
    executor = ContainerExecutor(executable=str(tmp_path / "does-not-exist"))

    assert await executor.is_available() is False
    with pytest.raises(SandboxUnavailableError) as error:
        await executor.create(ContainerConfig(image="alpine"), *dirs)
    assert error.value.runtime == "docker"
    assert executor.active_containers == ()


async def test_create_surfaces_runtime_run_failure(
    tmp_path: Path,
    dirs: tuple[Path, Path],
) -> None:
    script, _ = _stub_runtime(tmp_path, run="echo 'daemon unreachable' >&2; exit 125")
    executor = ContainerExecutor(executable=str(script))

    with pytest.raises(SandboxUnavailableError, match="daemon unreachable"):
        await executor.create(ContainerConfig(image="alpine"), *dirs)
    assert executor.active_containers == ()


async def test_session_destroys_on_error(tmp_path: Path, dirs: tuple[Path, Path]) -> None:
    script, log = _stub_runtime(tmp_path)
    executor = ContainerExecutor(executable=str(script))

    with pytest.raises(RuntimeError, match="adapter blew up"):
        async with executor.session(ContainerConfig(image="alpine"), *dirs) as context:
            raise RuntimeError("adapter blew up")

    assert context.phase is ContainerPhase.DESTROYED
    assert f"stop {context.container_id}" in _calls(log)


async def test_session_destroys_on_cancellation(tmp_path: Path, dirs: tuple[Path, Path]) -> None:
    script, _ = _stub_runtime(tmp_path)
    executor = ContainerExecutor(executable=str(script))
    entered = asyncio.Event()
    seen: list[str] = []

    async def work() -> None:
        async with executor.session(ContainerConfig(image="alpine"), *dirs) as context:
            seen.append(context.container_id)
            entered.set()
            await asyncio.sleep(30)

    task = asyncio.create_task(work())
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert executor.active_containers == ()
    assert len(seen) == 1


async def test_aclose_destroys_leftover_containers(
    tmp_path: Path,
    dirs: tuple[Path, Path],
) -> None:
    script, _ = _stub_runtime(tmp_path)
    async with ContainerExecutor(executable=str(script)) as executor:
        await executor.create(ContainerConfig(image="alpine"), *dirs)
        await executor.create(ContainerConfig(image="alpine"), *dirs)
        assert len(executor.active_containers) == 2

    assert executor.active_containers == ()


async def test_execute_in_timeout_returns_partial_output_and_stops_container(
    tmp_path: Path,
    dirs: tuple[Path, Path],
) -> None:
    script, log = _stub_runtime(tmp_path)
    executor = ContainerExecutor(executable=str(script))
    context = await executor.create(ContainerConfig(image="alpine"), *dirs)

    result = await executor.execute_in(
        context,
        ["sh", "-c", "echo partial; echo oops >&2; sleep 30"],
        timeout=0.5,
    )

    assert result.timed_out is True
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert result.stdout == "partial\n"
    assert result.stderr == "oops\n"
    assert result.execution_time_ms < 10_000
    assert f"stop {context.container_id}" in _calls(log)
    assert context.phase is ContainerPhase.DESTROYED
    assert executor.active_containers == ()
    with pytest.raises(ValueError, match="destroyed"):
        await executor.execute_in(context, ["echo", "again"])


async def test_execute_command_reports_exit_code_and_cwd(tmp_path: Path) -> None:
    executor = ContainerExecutor()

    result = await executor.execute_command("sh", ["-c", "pwd; exit 3"], cwd=tmp_path)

    assert isinstance(result, CommandResult)
    assert result.exit_code == 3
    assert result.stdout.strip() == str(tmp_path.resolve())
    assert not result.succeeded


async def test_execute_command_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        await ContainerExecutor().execute_command("true", timeout=0)


def test_container_config_validation_and_from_config() -> None:
    with pytest.raises(ValueError):
        ContainerConfig(image=" ")
    with pytest.raises(ValueError):
        ContainerConfig(image="alpine", timeout_seconds=0)

    config = ContainerConfig.from_config(
        {
            "sandbox": {"runtime": "podman", "image": "hachiko/agent:1", "memory_limit_mb": 256},
            "policy": {"network": "restricted"},
        }
    )

    assert config.runtime.value == "podman"
    assert config.image == "hachiko/agent:1"
    assert config.memory_limit_mb == 256
    assert config.network == "bridge"
    assert config.with_env(PLAN_ID="p").env == {"PLAN_ID": "p"}
