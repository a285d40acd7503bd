"""
hachiko — error taxonomy

File: src/hachiko/errors.py
Last updated: 2026-10-19

Purpose
- Normalized error kinds shared by the planner, adapters, sandbox and state machine.

What should be included in this file
- One base error with deterministic machine-readable fields.
- One subclass per failure kind, each carrying the context needed to report it.

Functional requirements
- Local, per-unit failures (validation, policy, backend) are contained by callers.
- Infrastructure failures (sandbox runtime, persistence) propagate to the top-level caller.
"""

from __future__ import annotations

from collections.abc import Iterable


class HachikoError(RuntimeError):
    """Base error with a stable ``code`` and a normalized ``detail``."""

    code: str = "error"

    def __init__(self, detail: str, **context: object) -> None:
        self.detail = _normalize_detail(detail)
        self.context = {key: value for key, value in context.items() if value is not None}

        parts = [f"code={self.code}"]
        for key in sorted(self.context):
            parts.append(f"{key}={self.context[key]}")
        parts.append(f"detail={self.detail}")
        super().__init__(" ".join(parts))


class PlanValidationError(ValueError, HachikoError):
    """Malformed plan or broken dependency graph; reported, never fatal to a run."""

    code = "validation"

    def __init__(
        self,
        detail: str,
        *,
        plan_id: str | None = None,
        violations: Iterable[str] = (),
    ) -> None:
        self.plan_id = plan_id
        self.violations = tuple(violations)
        HachikoError.__init__(self, detail, plan_id=plan_id)


class PolicyViolationError(HachikoError):
    """Requested file access falls outside the configured policy."""

    code = "policy_violation"

    def __init__(self, violations: Iterable[str]) -> None:
        self.violations = tuple(violations)
        detail = "Policy violations: " + ", ".join(self.violations)
        super().__init__(detail)


class BackendError(HachikoError):
    """An agent backend call failed (process exit, HTTP error, transport failure)."""

    code = "backend"

    def __init__(
        self,
        detail: str,
        *,
        backend: str,
        exit_code: int = -1,
        retryable: bool = False,
        http_status: int | None = None,
    ) -> None:
        self.backend = backend
        self.exit_code = int(exit_code)
        self.retryable = bool(retryable)
        self.http_status = http_status
        super().__init__(
            detail,
            backend=backend,
            exit_code=self.exit_code,
            retryable=str(self.retryable).lower(),
            http_status=http_status,
        )


class SandboxUnavailableError(HachikoError):
    """Isolation runtime is missing or unreachable."""

    code = "sandbox_unavailable"

    def __init__(self, detail: str, *, runtime: str) -> None:
        self.runtime = runtime
        super().__init__(detail, runtime=runtime)


class PersistenceError(HachikoError):
    """Reading or writing durable tracking state failed."""

    code = "persistence"

    def __init__(
        self,
        detail: str,
        *,
        plan_id: str | None = None,
        step_id: str | None = None,
    ) -> None:
        self.plan_id = plan_id
        self.step_id = step_id
        super().__init__(detail, plan_id=plan_id, step_id=step_id)


def _normalize_detail(value: object) -> str:
    text = str(value).strip()
    if not text:
        return "unspecified error"
    return " ".join(text.split())


__all__ = [
    "BackendError",
    "HachikoError",
    "PersistenceError",
    "PlanValidationError",
    "PolicyViolationError",
    "SandboxUnavailableError",
]
