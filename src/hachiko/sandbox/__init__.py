"""
hachiko — sandbox package

File: src/hachiko/sandbox/__init__.py
Last updated: 2026-10-19

Purpose
- Isolated execution for agent commands that must not touch the host repository directly.

Functional requirements
- One container context is never shared between concurrently executing steps.
"""

from __future__ import annotations

from hachiko.sandbox.container import (
    CommandResult,
    ContainerConfig,
    ContainerContext,
    ContainerExecutor,
    ContainerPhase,
    ContainerRuntime,
)

__all__ = [
    "CommandResult",
    "ContainerConfig",
    "ContainerContext",
    "ContainerExecutor",
    "ContainerPhase",
    "ContainerRuntime",
]
