"""Closed registry of agent backends and construction from validated config."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import replace
from enum import Enum
from typing import Any

import httpx
import structlog

from hachiko.agents.base import BaseAgentAdapter
from hachiko.agents.cloud_codex import CloudCodexAdapter
from hachiko.agents.cloud_devin import CloudDevinAdapter
from hachiko.agents.mock import MockAgentAdapter
from hachiko.agents.sandboxed_local import SandboxedLocalAdapter
from hachiko.policy.engine import PolicyConfig, PolicyEngine
from hachiko.sandbox.container import ContainerConfig, ContainerExecutor


class AgentKind(str, Enum):
    CLOUD_CODEX = "cloud-codex"
    CLOUD_DEVIN = "cloud-devin"
    SANDBOXED_LOCAL = "sandboxed-local"
    MOCK = "mock"


_KIND_KEYS: dict[AgentKind, tuple[str, ...]] = {
    AgentKind.MOCK: ("success_rate", "execution_time_ms", "modify_files"),
    AgentKind.CLOUD_CODEX: (
        "base_url",
        "model",
        "api_key_env",
        "timeout_seconds",
        "max_tokens",
        "temperature",
    ),
    AgentKind.CLOUD_DEVIN: (
        "base_url",
        "api_version",
        "api_key_env",
        "timeout_seconds",
        "webhook_url",
        "poll_interval_seconds",
    ),
    AgentKind.SANDBOXED_LOCAL: (),
}


class AgentRegistry:
    """
    Builds adapters by kind and holds them by configured name.

    Shared resources (one ``httpx.AsyncClient``, one ``ContainerExecutor``) are
    injected or created on first use and released by ``aclose``.
    """

    def __init__(
        self,
        config: Mapping[str, Any] | None = None,
        *,
        executor: ContainerExecutor | None = None,
        client: httpx.AsyncClient | None = None,
        environ: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config if config is not None else {}
        self._executor = executor
        self._owns_executor = executor is None
        self._client = client
        self._environ = environ
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._adapters: dict[str, BaseAgentAdapter] = {}
        self._factories: dict[AgentKind, Callable[..., BaseAgentAdapter]] = {
            AgentKind.MOCK: self._create_mock,
            AgentKind.CLOUD_CODEX: self._create_codex,
            AgentKind.CLOUD_DEVIN: self._create_devin,
            AgentKind.SANDBOXED_LOCAL: self._create_sandboxed,
        }

    def create(
        self,
        name: str,
        settings: Mapping[str, Any],
        policy: PolicyEngine,
    ) -> BaseAgentAdapter:
        raw_kind = settings.get("kind", name)
        try:
            kind = AgentKind(raw_kind)
        except ValueError:
            allowed = ", ".join(item.value for item in AgentKind)
            raise ValueError(
                f"unknown agent kind {raw_kind!r} for agent {name!r}; expected one of: {allowed}"
            ) from None
        options = {key: settings[key] for key in _KIND_KEYS[kind] if key in settings}
        adapter = self._factories[kind](name, settings, policy, options)
        self._logger.debug("agent_created", agent=name, kind=kind.value)
        return adapter

    def register(self, adapter: BaseAgentAdapter) -> None:
        if adapter.name in self._adapters:
            raise ValueError(f"agent {adapter.name!r} is already registered")
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> BaseAgentAdapter:
        try:
            return self._adapters[name]
        except KeyError:
            known = ", ".join(sorted(self._adapters)) or "none"
            raise KeyError(f"unknown agent {name!r}; configured agents: {known}") from None

    def names(self) -> tuple[str, ...]:
        return tuple(self._adapters)

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    def __iter__(self) -> Iterator[BaseAgentAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
        if self._executor is not None and self._owns_executor:
            await self._executor.aclose()

    def _http_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"logger": self._logger}
        if self._client is not None:
            options["client"] = self._client
        if self._environ is not None:
            options["environ"] = self._environ
        return options

    def _create_mock(
        self,
        name: str,
        settings: Mapping[str, Any],
        policy: PolicyEngine,
        options: dict[str, Any],
    ) -> BaseAgentAdapter:
        return MockAgentAdapter(name, policy=policy, logger=self._logger, **options)

    def _create_codex(
        self,
        name: str,
        settings: Mapping[str, Any],
        policy: PolicyEngine,
        options: dict[str, Any],
    ) -> BaseAgentAdapter:
        return CloudCodexAdapter(name, policy=policy, **self._http_options(), **options)

    def _create_devin(
        self,
        name: str,
        settings: Mapping[str, Any],
        policy: PolicyEngine,
        options: dict[str, Any],
    ) -> BaseAgentAdapter:
        return CloudDevinAdapter(name, policy=policy, **self._http_options(), **options)

    def _create_sandboxed(
        self,
        name: str,
        settings: Mapping[str, Any],
        policy: PolicyEngine,
        options: dict[str, Any],
    ) -> BaseAgentAdapter:
        container = ContainerConfig.from_config(self._config, image=settings.get("image"))
        if "timeout_seconds" in settings:
            container = replace(container, timeout_seconds=float(settings["timeout_seconds"]))
        if "command" not in settings:
            raise ValueError(f"agent {name!r} of kind sandboxed-local requires a command")
        if self._executor is None:
            self._executor = ContainerExecutor(logger=self._logger)
            self._owns_executor = True
        return SandboxedLocalAdapter(
            name,
            executor=self._executor,
            container=container,
            command=settings["command"],
            policy=policy,
            logger=self._logger,
        )


def build_registry(
    config: Mapping[str, Any],
    *,
    executor: ContainerExecutor | None = None,
    client: httpx.AsyncClient | None = None,
    environ: Mapping[str, str] | None = None,
    logger: Any | None = None,
) -> AgentRegistry:
    """
    Build every adapter under ``agents.*`` with one policy derived from ``[policy]``.

    When the default agent is ``mock`` and no table configures it, a mock
    adapter with built-in settings is added.
    """
    registry = AgentRegistry(
        config,
        executor=executor,
        client=client,
        environ=environ,
        logger=logger,
    )
    policy = PolicyEngine(PolicyConfig.from_config(config), logger=logger)
    agents: Mapping[str, Mapping[str, Any]] = config.get("agents", {})
    for name, settings in agents.items():
        registry.register(registry.create(name, settings, policy))

    default_agent = config.get("defaults", {}).get("agent", AgentKind.MOCK.value)
    if default_agent not in registry and default_agent == AgentKind.MOCK.value:
        registry.register(registry.create(default_agent, {"kind": default_agent}, policy))
    return registry


__all__ = ["AgentKind", "AgentRegistry", "build_registry"]
