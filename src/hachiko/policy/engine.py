"""File-access and command policy evaluation for agent executions."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Final

import structlog

from hachiko.utils.fs import relative_within

DEFAULT_MAX_FILE_SIZE_BYTES: Final[int] = 10 * 1024 * 1024
DEFAULT_DANGEROUS_COMMANDS: Final[tuple[str, ...]] = (
    "rm -rf",
    "sudo",
    "curl",
    "wget",
    "exec",
    "eval",
)


class PolicyOperation(str, Enum):
    READ = "read"
    WRITE = "write"
    CREATE = "create"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """
    Immutable file-access policy.

    ``allowed_paths`` is an allowlist when non-empty; ``blocked_paths`` always
    wins. Patterns are repo-relative POSIX globs.
    """

    allowed_paths: tuple[str, ...] = ()
    blocked_paths: tuple[str, ...] = ()
    allowed_operations: frozenset[PolicyOperation] = frozenset(PolicyOperation)
    max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES
    dangerous_commands: tuple[str, ...] = DEFAULT_DANGEROUS_COMMANDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "allowed_paths", _normalize_patterns(self.allowed_paths))
        object.__setattr__(self, "blocked_paths", _normalize_patterns(self.blocked_paths))
        object.__setattr__(
            self,
            "allowed_operations",
            frozenset(PolicyOperation(item) for item in self.allowed_operations),
        )
        object.__setattr__(self, "dangerous_commands", tuple(self.dangerous_commands))
        if self.max_file_size_bytes <= 0:
            raise ValueError("max_file_size_bytes must be > 0")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> PolicyConfig:
        """Derive the policy from the ``[policy]`` config section."""
        section = config.get("policy", {})
        return cls(
            allowed_paths=tuple(section.get("allowlist_globs", ())),
            blocked_paths=tuple(section.get("risky_globs", ())),
            max_file_size_bytes=int(
                section.get("max_file_size_bytes", DEFAULT_MAX_FILE_SIZE_BYTES)
            ),
        )


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    allowed: bool
    violations: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "violations", tuple(self.violations))
        if self.allowed and self.violations:
            raise ValueError("an allowed decision cannot carry violations")


class PolicyEngine:
    """Evaluates file sets and commands against a ``PolicyConfig``."""

    def __init__(self, config: PolicyConfig | None = None, *, logger: Any | None = None) -> None:
        self._config = config if config is not None else PolicyConfig()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def config(self) -> PolicyConfig:
        return self._config

    def evaluate(
        self,
        files: Iterable[str | Path],
        repo_path: str | Path,
        operation: PolicyOperation | str = PolicyOperation.WRITE,
    ) -> PolicyDecision:
        """
        Check every file and collect every violated rule, not just the first.

        Files may be absolute or repo-relative. Files that do not exist yet are
        only subject to the path rules.
        """
        violations: list[str] = []
        op = PolicyOperation(operation)
        if op not in self._config.allowed_operations:
            violations.append(f"Operation not permitted: {op.value}")

        repo_root = Path(repo_path).resolve()
        for file in files:
            relative = relative_within(file, repo_root)
            if relative is None:
                violations.append(f"Access outside repository: {file}")
                continue
            absolute = repo_root / relative

            if any(glob_match(relative, pattern) for pattern in self._config.blocked_paths):
                violations.append(f"Access to blocked path: {relative}")

            if self._config.allowed_paths and not any(
                glob_match(relative, pattern) for pattern in self._config.allowed_paths
            ):
                violations.append(f"Access to non-allowlisted path: {relative}")

            try:
                size = absolute.stat().st_size if absolute.is_file() else None
            except OSError:
                size = None
            if size is not None and size > self._config.max_file_size_bytes:
                violations.append(f"File too large: {relative} ({size} bytes)")

        if violations:
            self._logger.warning(
                "policy_denied",
                operation=op.value,
                violations=violations,
            )
            return PolicyDecision(allowed=False, violations=tuple(violations))
        return PolicyDecision(allowed=True)

    def evaluate_command(self, command: str | Sequence[str]) -> PolicyDecision:
        rendered = command if isinstance(command, str) else " ".join(command)
        violations = tuple(
            f"Dangerous command pattern detected: {pattern}"
            for pattern in self._config.dangerous_commands
            if pattern in rendered
        )
        if violations:
            self._logger.warning("policy_command_denied", violations=list(violations))
            return PolicyDecision(allowed=False, violations=violations)
        return PolicyDecision(allowed=True)


def glob_match(path: str, pattern: str) -> bool:
    """
    ``fnmatch`` with repo-glob conveniences.

    ``**/`` may match zero directories, and ``dir/*`` or ``dir/**`` match
    everything beneath ``dir`` because ``*`` crosses ``/`` under ``fnmatch``.
    """
    candidate = PurePosixPath(path).as_posix()
    return any(fnmatch.fnmatchcase(candidate, variant) for variant in _expand_pattern(pattern))


def _expand_pattern(pattern: str) -> set[str]:
    variants = {pattern}
    pending = [pattern]
    while pending:
        current = pending.pop()
        reduced: list[str] = []
        if current.startswith("**/"):
            reduced.append(current[3:])
        index = current.find("/**/")
        while index != -1:
            reduced.append(current[:index] + "/" + current[index + 4 :])
            index = current.find("/**/", index + 1)
        for item in reduced:
            if item not in variants:
                variants.add(item)
                pending.append(item)
    return variants


def _normalize_patterns(patterns: Iterable[str]) -> tuple[str, ...]:
    normalized: list[str] = []
    for pattern in patterns:
        if not isinstance(pattern, str) or not pattern.strip():
            raise ValueError("policy glob patterns must be non-empty strings")
        normalized.append(pattern.strip().removeprefix("./"))
    return tuple(normalized)


__all__ = [
    "DEFAULT_DANGEROUS_COMMANDS",
    "DEFAULT_MAX_FILE_SIZE_BYTES",
    "PolicyConfig",
    "PolicyDecision",
    "PolicyEngine",
    "PolicyOperation",
    "glob_match",
]
