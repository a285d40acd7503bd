"""
hachiko — chat-completions backend with file-operation tools

File: src/hachiko/agents/cloud_codex.py
Last updated: 2026-10-19

Purpose
- Run a migration step through an OpenAI-compatible chat completions API.

What should be included in this file
- Request construction: system prompt, user prompt with file contents, function tools.
- Extraction of ``modify_file``/``create_file``/``delete_file`` tool calls.
- Application of those operations to declared files only.

Functional requirements
- The run succeeds only when ``finish_reason`` is ``stop`` or ``tool_calls``.
- Any operation on an undeclared path fails the whole run before anything is written.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, Final

from hachiko.agents.base import AgentInput, AgentResult, ensure_disjoint
from hachiko.agents.http_client import HttpAgentAdapter
from hachiko.errors import BackendError, PolicyViolationError
from hachiko.utils.fs import atomic_write

DEFAULT_BASE_URL: Final[str] = "https://api.openai.com"
DEFAULT_MODEL: Final[str] = "gpt-4-turbo"
DEFAULT_API_KEY_ENV: Final[str] = "OPENAI_API_KEY"
SUCCESS_FINISH_REASONS: Final[frozenset[str]] = frozenset({"stop", "tool_calls"})

_FILE_TOOLS: Final[tuple[tuple[str, str, bool], ...]] = (
    ("modify_file", "Replace the full content of an existing target file.", True),
    ("create_file", "Create a new target file with the given content.", True),
    ("delete_file", "Delete a target file.", False),
)


@dataclass(frozen=True, slots=True)
class FileOperation:
    action: str
    path: str
    content: str | None = None


class CloudCodexAdapter(HttpAgentAdapter):
    """Chat-completions agent that edits files through function calls."""

    kind: ClassVar[str] = "cloud-codex"

    def __init__(
        self,
        name: str | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        api_key_env: str = DEFAULT_API_KEY_ENV,
        timeout_seconds: float = 120.0,
        max_tokens: int = 4000,
        temperature: float = 0.1,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            name,
            base_url=base_url,
            api_key_env=api_key_env,
            timeout_seconds=timeout_seconds,
            **kwargs,
        )
        if not model.strip():
            raise ValueError("model must be a non-empty string")
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if not (0.0 <= temperature <= 2.0):
            raise ValueError("temperature must be between 0.0 and 2.0")
        self._model = model
        self._max_tokens = int(max_tokens)
        self._temperature = float(temperature)

    async def validate(self) -> bool:
        try:
            await self._request_json("GET", "/v1/models", retry=False)
        except BackendError as exc:
            self._logger.warning("agent_validation_failed", agent=self.name, error=exc.detail)
            return False
        return True

    def get_config(self) -> dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind,
            "base_url": self._base_url,
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "timeout_seconds": self._timeout_seconds,
            "has_api_key": self.has_api_key,
        }

    def build_request(self, agent_input: AgentInput) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": _system_prompt()},
                {"role": "user", "content": _user_prompt(agent_input)},
            ],
            "tools": _tool_definitions(),
            "tool_choice": "auto",
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }

    async def _run(self, agent_input: AgentInput) -> AgentResult:
        response = await self._request_json(
            "POST",
            "/v1/chat/completions",
            payload=self.build_request(agent_input),
        )
        choice = _first_choice(response, backend=self.kind)
        message = choice.get("message") or {}
        finish_reason = choice.get("finish_reason")
        output = _format_output(message)

        if finish_reason not in SUCCESS_FINISH_REASONS:
            return AgentResult.failure(
                f"Incomplete completion: finish_reason={finish_reason}",
                exit_code=1,
                output=output,
            )

        operations = extract_file_operations(message, backend=self.kind)
        declared = set(agent_input.relative_files())
        undeclared = [op for op in operations if op.path not in declared]
        if undeclared:
            raise PolicyViolationError(
                f"Undeclared file operation: {op.action} {op.path}" for op in undeclared
            )

        modified, created, deleted = self._apply(agent_input, operations)
        modified, created, deleted = ensure_disjoint(modified, created, deleted)
        return AgentResult(
            success=True,
            modified_files=modified,
            created_files=created,
            deleted_files=deleted,
            output=output,
        )

    def _apply(
        self,
        agent_input: AgentInput,
        operations: Sequence[FileOperation],
    ) -> tuple[list[str], list[str], list[str]]:
        modified: list[str] = []
        created: list[str] = []
        deleted: list[str] = []
        for op in operations:
            target = agent_input.repo_path / op.path
            if op.action == "delete_file":
                target.unlink(missing_ok=True)
                deleted.append(op.path)
                continue
            existed = target.exists()
            atomic_write(target, op.content or "")
            (modified if existed else created).append(op.path)
            self._logger.debug("agent_file_written", path=op.path, action=op.action)
        return modified, created, deleted


def extract_file_operations(message: Mapping[str, Any], *, backend: str) -> list[FileOperation]:
    """Parse file tool calls out of a chat completion message; other tools are ignored."""
    operations: list[FileOperation] = []
    for call in message.get("tool_calls") or ():
        function = call.get("function") or {}
        action = function.get("name")
        if action not in {name for name, _, _ in _FILE_TOOLS}:
            continue
        try:
            arguments = json.loads(function.get("arguments") or "{}")
        except json.JSONDecodeError as exc:
            raise BackendError(
                f"malformed arguments for {action}: {exc.msg}",
                backend=backend,
            ) from exc
        path = arguments.get("path") if isinstance(arguments, dict) else None
        if not isinstance(path, str) or not path.strip():
            raise BackendError(f"{action} call is missing a path", backend=backend)
        content = arguments.get("content")
        if action != "delete_file" and not isinstance(content, str):
            raise BackendError(f"{action} call for {path} is missing content", backend=backend)
        operations.append(
            FileOperation(
                action=action,
                path=path.strip().removeprefix("./"),
                content=content if action != "delete_file" else None,
            )
        )
    return operations


def _first_choice(response: Any, *, backend: str) -> Mapping[str, Any]:
    choices = response.get("choices") if isinstance(response, dict) else None
    if not choices or not isinstance(choices[0], dict):
        raise BackendError("completion response has no choices", backend=backend)
    return choices[0]


def _format_output(message: Mapping[str, Any]) -> str:
    parts: list[str] = []
    content = message.get("content")
    if isinstance(content, str) and content.strip():
        parts.append(content.strip())
    for call in message.get("tool_calls") or ():
        name = (call.get("function") or {}).get("name", "unknown")
        parts.append(f"[tool] {name}")
    return "\n".join(parts)


def _tool_definitions() -> list[dict[str, Any]]:
    tools: list[dict[str, Any]] = []
    for name, description, has_content in _FILE_TOOLS:
        properties: dict[str, Any] = {
            "path": {"type": "string", "description": "Repository-relative file path."}
        }
        required = ["path"]
        if has_content:
            properties["content"] = {"type": "string", "description": "Complete file content."}
            required.append("content")
        tools.append(
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": description,
                    "parameters": {
                        "type": "object",
                        "properties": properties,
                        "required": required,
                    },
                },
            }
        )
    return tools


def _system_prompt() -> str:
    return (
        "You are a code migration agent working inside an automated migration.\n"
        "Only change the target files you are given, using the provided file tools.\n"
        "Preserve existing behaviour and follow the project's conventions.\n"
        "Send complete file contents, never partial diffs."
    )


def _user_prompt(agent_input: AgentInput) -> str:
    lines = [
        f"Migration plan: {agent_input.plan_id}",
        f"Step: {agent_input.step_id}",
    ]
    if agent_input.chunk:
        lines.append(f"Chunk: {agent_input.chunk}")
    lines.extend(["", "Instructions:", agent_input.prompt, "", "Target files:"])
    for relative in agent_input.relative_files():
        target = agent_input.repo_path / relative
        try:
            content = target.read_text(encoding="utf-8")
        except FileNotFoundError:
            lines.append(f"--- {relative} (does not exist yet)")
            continue
        lines.extend([f"--- {relative}", "```", content, "```"])
    return "\n".join(lines)


__all__ = [
    "CloudCodexAdapter",
    "DEFAULT_BASE_URL",
    "DEFAULT_MODEL",
    "FileOperation",
    "SUCCESS_FINISH_REASONS",
    "extract_file_operations",
]
