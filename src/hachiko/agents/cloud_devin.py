"""Session-based cloud backend: create a remote session, then poll it to completion."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, ClassVar, Final

from hachiko.agents.base import AgentInput, AgentResult, ensure_disjoint
from hachiko.agents.http_client import HttpAgentAdapter
from hachiko.errors import BackendError
from hachiko.utils.concurrency import run_with_timeout

DEFAULT_BASE_URL: Final[str] = "https://api.devin.ai"
DEFAULT_API_VERSION: Final[str] = "v1"
DEFAULT_API_KEY_ENV: Final[str] = "DEVIN_API_KEY"
TERMINAL_SESSION_STATUSES: Final[frozenset[str]] = frozenset({"completed", "failed", "cancelled"})


class CloudDevinAdapter(HttpAgentAdapter):
    kind: ClassVar[str] = "cloud-devin"

    def __init__(
        self,
        name: str | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        api_version: str = DEFAULT_API_VERSION,
        api_key_env: str = DEFAULT_API_KEY_ENV,
        timeout_seconds: float = 600.0,
        webhook_url: str | None = None,
        poll_interval_seconds: float = 5.0,
        max_poll_interval_seconds: float = 30.0,
        request_timeout_seconds: float = 30.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            name,
            base_url=base_url,
            api_key_env=api_key_env,
            timeout_seconds=request_timeout_seconds,
            **kwargs,
        )
        if not api_version.strip():
            raise ValueError("api_version must be a non-empty string")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if poll_interval_seconds <= 0 or max_poll_interval_seconds < poll_interval_seconds:
            raise ValueError("poll intervals must be > 0 and max >= initial")
        self._api_version = api_version.strip("/")
        self._session_timeout_seconds = float(timeout_seconds)
        self._webhook_url = webhook_url
        self._poll_interval_seconds = float(poll_interval_seconds)
        self._max_poll_interval_seconds = float(max_poll_interval_seconds)

    async def validate(self) -> bool:
        try:
            await self._request_json("GET", f"/{self._api_version}/health", retry=False)
        except BackendError as exc:
            self._logger.warning("agent_validation_failed", agent=self.name, error=exc.detail)
            return False
        return True

    def get_config(self) -> dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind,
            "base_url": self._base_url,
            "api_version": self._api_version,
            "timeout_seconds": self._session_timeout_seconds,
            "has_api_key": self.has_api_key,
            "has_webhook": self._webhook_url is not None,
        }

    def build_session_request(self, agent_input: AgentInput) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "plan_id": agent_input.plan_id,
            "step_id": agent_input.step_id,
        }
        if agent_input.chunk:
            metadata["chunk"] = agent_input.chunk
        return {
            "prompt": _build_prompt(agent_input),
            "files": list(agent_input.relative_files()),
            "repository_path": str(agent_input.repo_path),
            "webhook_url": self._webhook_url,
            "metadata": metadata,
        }

    async def _run(self, agent_input: AgentInput) -> AgentResult:
        sessions_path = f"/{self._api_version}/sessions"
        created = await self._request_json(
            "POST",
            sessions_path,
            payload=self.build_session_request(agent_input),
        )
        session_id = created.get("session_id") if isinstance(created, dict) else None
        if not isinstance(session_id, str) or not session_id:
            raise BackendError("session response is missing session_id", backend=self.kind)
        self._logger.info(
            "agent_session_created",
            agent=self.name,
            session_id=session_id,
            plan_id=agent_input.plan_id,
            step_id=agent_input.step_id,
        )

        timeout = agent_input.timeout_seconds or self._session_timeout_seconds
        try:
            session = await run_with_timeout(
                self._poll(f"{sessions_path}/{session_id}"),
                timeout,
            )
        except TimeoutError as exc:
            raise BackendError(
                f"session {session_id} did not finish within {timeout} seconds",
                backend=self.kind,
            ) from exc

        status = session.get("status")
        output = session.get("output") or {}
        modified, created_files, deleted = ensure_disjoint(
            output.get("files_modified") or (),
            output.get("files_created") or (),
            output.get("files_deleted") or (),
        )
        summary = str(output.get("summary") or "")
        if status != "completed":
            return AgentResult.failure(
                str(output.get("error") or f"session {session_id} ended with status {status}"),
                exit_code=1,
                output=summary,
            )
        return AgentResult(
            success=True,
            modified_files=modified,
            created_files=created_files,
            deleted_files=deleted,
            output=summary,
        )

    async def _poll(self, path: str) -> Mapping[str, Any]:
        delay = self._poll_interval_seconds
        while True:
            session = await self._request_json("GET", path)
            if isinstance(session, dict) and session.get("status") in TERMINAL_SESSION_STATUSES:
                return session
            self._logger.debug(
                "agent_session_pending",
                agent=self.name,
                status=session.get("status") if isinstance(session, dict) else None,
            )
            await self._sleep(delay)
            delay = min(delay * 1.5, self._max_poll_interval_seconds)


def _build_prompt(agent_input: AgentInput) -> str:
    lines = [
        "# Code Migration Task",
        "",
        f"- Migration plan: {agent_input.plan_id}",
        f"- Current step: {agent_input.step_id}",
    ]
    if agent_input.chunk:
        lines.append(f"- Chunk: {agent_input.chunk}")
    lines.extend(["", "## Target files"])
    lines.extend(f"- {relative}" for relative in agent_input.relative_files())
    lines.extend(
        [
            "",
            "## Instructions",
            agent_input.prompt,
            "",
            "Only modify the target files listed above and preserve existing behaviour.",
        ]
    )
    return "\n".join(lines)


__all__ = [
    "CloudDevinAdapter",
    "DEFAULT_API_VERSION",
    "DEFAULT_BASE_URL",
    "TERMINAL_SESSION_STATUSES",
]
