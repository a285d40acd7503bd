"""
hachiko — container sandbox executor

File: src/hachiko/sandbox/container.py
Last updated: 2026-10-19

Purpose
- Run untrusted agent commands inside a locked-down docker/podman container.

What should be included in this file
- Container configuration and context value objects.
- An explicitly constructed, process-scoped executor with create/execute/destroy.
- A scoped ``session`` that destroys its container on every exit path.
- A bare subprocess runner sharing the same timeout contract.

Functional requirements
- ``create`` fails with ``SandboxUnavailableError`` before creating anything when the
  runtime is missing or unreachable.
- ``destroy`` is idempotent; unknown ids are a no-op.
- On timeout the process is killed and reaped, partial output is kept, and the
  result carries ``timed_out=True`` and exit code 124.
- A command that times out inside a container also destroys that container.
"""

from __future__ import annotations

import asyncio
import os
import secrets
import signal
import time
from collections.abc import Mapping
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from hachiko.constants import CONTAINER_REPO_MOUNT, CONTAINER_WORKSPACE_MOUNT, TIMEOUT_EXIT_CODE
from hachiko.errors import SandboxUnavailableError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

_AVAILABILITY_TIMEOUT_SECONDS: Final[float] = 10.0
_CONTROL_TIMEOUT_SECONDS: Final[float] = 30.0
_DRAIN_TIMEOUT_SECONDS: Final[float] = 1.0
_READ_CHUNK_BYTES: Final[int] = 65_536


class ContainerRuntime(str, Enum):
    DOCKER = "docker"
    PODMAN = "podman"


class ContainerPhase(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    DESTROYED = "destroyed"


@dataclass(frozen=True, slots=True)
class ContainerConfig:
    """Image, limits and environment for one sandbox container."""

    image: str
    runtime: ContainerRuntime = ContainerRuntime.DOCKER
    timeout_seconds: float = 300.0
    memory_limit_mb: int | None = None
    cpu_limit: float | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    workdir: str = CONTAINER_WORKSPACE_MOUNT.as_posix()
    network: str = "none"
    user: str = "1000:1000"

    def __post_init__(self) -> None:
        if not self.image.strip():
            raise ValueError("image must be a non-empty string")
        object.__setattr__(self, "runtime", ContainerRuntime(self.runtime))
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.memory_limit_mb is not None and self.memory_limit_mb <= 0:
            raise ValueError("memory_limit_mb must be > 0")
        if self.cpu_limit is not None and self.cpu_limit <= 0:
            raise ValueError("cpu_limit must be > 0")
        object.__setattr__(self, "env", dict(self.env))

    def with_env(self, **env: str) -> ContainerConfig:
        merged = {**self.env, **env}
        return ContainerConfig(
            image=self.image,
            runtime=self.runtime,
            timeout_seconds=self.timeout_seconds,
            memory_limit_mb=self.memory_limit_mb,
            cpu_limit=self.cpu_limit,
            env=merged,
            workdir=self.workdir,
            network=self.network,
            user=self.user,
        )

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        image: str | None = None,
    ) -> ContainerConfig:
        """Build from the ``[sandbox]`` section; ``policy.network`` picks the network mode."""
        section = config.get("sandbox", {})
        network_policy = config.get("policy", {}).get("network", "none")
        return cls(
            image=image or section.get("image", ""),
            runtime=ContainerRuntime(section.get("runtime", ContainerRuntime.DOCKER.value)),
            timeout_seconds=float(section.get("command_timeout_seconds", 300)),
            memory_limit_mb=section.get("memory_limit_mb"),
            cpu_limit=section.get("cpu_limit"),
            network="none" if network_policy == "none" else "bridge",
        )


@dataclass(slots=True)
class ContainerContext:
    container_id: str
    workspace_path: Path
    repo_path: Path
    config: ContainerConfig
    phase: ContainerPhase = ContainerPhase.CREATED


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized outcome of a container or host command."""

    exit_code: int
    stdout: str
    stderr: str
    execution_time_ms: int
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0


class ContainerExecutor:
    """
    Process-scoped container lifecycle manager.

    Construct one explicitly, inject it where needed, and ``aclose()`` it (or use
    it as an async context manager) on shutdown to destroy leftover containers.
    ``executable`` overrides the runtime binary, e.g. an absolute path.
    """

    def __init__(self, *, executable: str | None = None, logger: Any | None = None) -> None:
        self._executable = executable
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._contexts: dict[str, ContainerContext] = {}

    async def __aenter__(self) -> ContainerExecutor:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def active_containers(self) -> tuple[str, ...]:
        return tuple(
            container_id
            for container_id, context in self._contexts.items()
            if context.phase is not ContainerPhase.DESTROYED
        )

    async def is_available(
        self,
        runtime: ContainerRuntime | str = ContainerRuntime.DOCKER,
    ) -> bool:
        try:
            result = await self.execute_command(
                self._binary(ContainerRuntime(runtime)),
                ["--version"],
                timeout=_AVAILABILITY_TIMEOUT_SECONDS,
            )
        except OSError:
            return False
        return result.succeeded

    async def create(
        self,
        config: ContainerConfig,
        workspace_path: str | Path,
        repo_path: str | Path,
    ) -> ContainerContext:
        runtime = config.runtime
        if not await self.is_available(runtime):
            raise SandboxUnavailableError(
                f"container runtime {runtime.value!r} is not available",
                runtime=runtime.value,
            )

        workspace = Path(workspace_path).resolve()
        repo = Path(repo_path).resolve()
        container_id = f"hachiko-{int(time.time() * 1000)}-{secrets.token_hex(5)}"
        args = _run_arguments(config, container_id, workspace, repo)

        try:
            result = await self.execute_command(
                self._binary(runtime),
                args,
                timeout=_CONTROL_TIMEOUT_SECONDS,
            )
        except OSError as exc:
            raise SandboxUnavailableError(
                f"failed to start container runtime: {exc}",
                runtime=runtime.value,
            ) from exc
        if not result.succeeded:
            detail = result.stderr.strip() or f"exit code {result.exit_code}"
            self._logger.error(
                "container_create_failed",
                container_id=container_id,
                image=config.image,
                stderr=result.stderr,
            )
            raise SandboxUnavailableError(
                f"{runtime.value} run failed: {detail}",
                runtime=runtime.value,
            )

        context = ContainerContext(
            container_id=container_id,
            workspace_path=workspace,
            repo_path=repo,
            config=config,
        )
        self._contexts[container_id] = context
        self._logger.info("container_created", container_id=container_id, image=config.image)
        return context

    async def execute_in(
        self,
        context: ContainerContext,
        command: Sequence[str],
        timeout: float | None = None,
    ) -> CommandResult:
        """
        Run ``command`` in the container.

        Killing the host-side client does not stop the process inside the
        container, so a timed-out command takes its container down with it: the
        container is destroyed and the context cannot run further commands.
        """
        if context.phase is ContainerPhase.DESTROYED:
            raise ValueError(f"container {context.container_id} has been destroyed")
        if not command:
            raise ValueError("command must not be empty")

        config = context.config
        args: list[str] = ["exec", "--workdir", config.workdir]
        for key, value in config.env.items():
            args.extend(("-e", f"{key}={value}"))
        args.append(context.container_id)
        args.extend(command)

        context.phase = ContainerPhase.RUNNING
        result = await self.execute_command(
            self._binary(config.runtime),
            args,
            timeout=config.timeout_seconds if timeout is None else timeout,
        )
        self._logger.debug(
            "container_command_finished",
            container_id=context.container_id,
            command=list(command),
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            execution_time_ms=result.execution_time_ms,
        )
        if result.timed_out:
            self._logger.warning(
                "container_exec_timed_out",
                container_id=context.container_id,
                command=list(command),
            )
            await self.destroy(context.container_id)
        return result

    async def destroy(self, container_id: str) -> None:
        """Stop a container; repeated or unknown ids are a no-op and stop failures are logged."""
        context = self._contexts.get(container_id)
        if context is None or context.phase is ContainerPhase.DESTROYED:
            self._logger.debug("container_destroy_skipped", container_id=container_id)
            return

        context.phase = ContainerPhase.DESTROYED
        runtime = context.config.runtime
        try:
            result = await self.execute_command(
                self._binary(runtime),
                ["stop", container_id],
                timeout=_CONTROL_TIMEOUT_SECONDS,
            )
        except OSError as exc:
            self._logger.warning(
                "container_destroy_failed",
                container_id=container_id,
                error=str(exc),
            )
            return
        if not result.succeeded:
            self._logger.warning(
                "container_destroy_failed",
                container_id=container_id,
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
            return
        self._logger.info("container_destroyed", container_id=container_id)

    @asynccontextmanager
    async def session(
        self,
        config: ContainerConfig,
        workspace_path: str | Path,
        repo_path: str | Path,
    ) -> AsyncIterator[ContainerContext]:
        context = await self.create(config, workspace_path, repo_path)
        try:
            yield context
        finally:
            await asyncio.shield(self.destroy(context.container_id))

    async def aclose(self) -> None:
        for container_id in self.active_containers:
            await self.destroy(container_id)

    async def execute_command(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: float | None = None,
        cwd: str | Path | None = None,
    ) -> CommandResult:
        """
        Run ``command args...`` directly on the host.

        ``timeout`` is a hard wall-clock limit. On expiry the whole process group
        is killed and reaped; output read so far is returned with exit code 124.
        """
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be > 0")

        started = time.perf_counter()
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=None if cwd is None else str(cwd),
            start_new_session=os.name == "posix",
        )
        stdout = bytearray()
        stderr = bytearray()
        readers = [
            asyncio.create_task(_drain(process.stdout, stdout)),
            asyncio.create_task(_drain(process.stderr, stderr)),
        ]

        timed_out = False
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except TimeoutError:
            timed_out = True
            _kill_process_tree(process)
            await process.wait()
        except BaseException:
            _kill_process_tree(process)
            await process.wait()
            for reader in readers:
                reader.cancel()
            raise

        # Orphaned grandchildren may still hold the pipes open; stop reading after a grace period.
        _, pending = await asyncio.wait(readers, timeout=_DRAIN_TIMEOUT_SECONDS)
        for reader in pending:
            reader.cancel()
        with suppress(asyncio.CancelledError):
            await asyncio.gather(*pending)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return CommandResult(
            exit_code=TIMEOUT_EXIT_CODE if timed_out else _normalize_returncode(process.returncode),
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            execution_time_ms=elapsed_ms,
            timed_out=timed_out,
        )

    def _binary(self, runtime: ContainerRuntime) -> str:
        return self._executable if self._executable is not None else runtime.value


def _run_arguments(
    config: ContainerConfig,
    container_id: str,
    workspace: Path,
    repo: Path,
) -> list[str]:
    args = [
        "run",
        "--detach",
        "--name",
        container_id,
        "--rm",
        "--user",
        config.user,
        "--read-only",
        "--tmpfs",
        "/tmp:exec,size=100m",
        "--cap-drop",
        "ALL",
        "--security-opt",
        "no-new-privileges",
        "--network",
        config.network,
    ]
    if config.memory_limit_mb is not None:
        args.extend(("--memory", f"{config.memory_limit_mb}m"))
    if config.cpu_limit is not None:
        args.extend(("--cpus", f"{config.cpu_limit:g}"))
    args.extend(
        (
            "-v",
            f"{workspace}:{CONTAINER_WORKSPACE_MOUNT.as_posix()}:rw",
            "-v",
            f"{repo}:{CONTAINER_REPO_MOUNT.as_posix()}:ro",
            "--workdir",
            config.workdir,
        )
    )
    for key, value in config.env.items():
        args.extend(("-e", f"{key}={value}"))
    args.extend((config.image, "sleep", "infinity"))
    return args


async def _drain(stream: asyncio.StreamReader | None, sink: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return
        sink.extend(chunk)


def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    if os.name == "posix":
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(process.pid, signal.SIGKILL)
            return
    with suppress(ProcessLookupError):
        process.kill()


def _normalize_returncode(returncode: int | None) -> int:
    if returncode is None:
        return -1
    # Killed by signal N is reported as -N by asyncio; use the shell convention.
    return 128 - returncode if returncode < 0 else returncode


__all__ = [
    "CommandResult",
    "ContainerConfig",
    "ContainerContext",
    "ContainerExecutor",
    "ContainerPhase",
    "ContainerRuntime",
]
