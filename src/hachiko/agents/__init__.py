"""
hachiko — agents package

File: src/hachiko/agents/__init__.py
Last updated: 2026-10-19

Purpose
- Uniform execution interface over cloud, containerized and mock coding agents.

Functional requirements
- Policy is enforced before any backend work.
- Backend failures surface as failed ``AgentResult`` values, not exceptions.
"""

from __future__ import annotations

from hachiko.agents.base import AgentInput, AgentResult, BaseAgentAdapter, ensure_disjoint
from hachiko.agents.cloud_codex import CloudCodexAdapter, FileOperation, extract_file_operations
from hachiko.agents.cloud_devin import CloudDevinAdapter
from hachiko.agents.http_client import (
    BackoffConfig,
    HttpAgentAdapter,
    map_http_error,
    run_with_retries,
)
from hachiko.agents.mock import MOCK_FAILURE_MESSAGE, MockAgentAdapter
from hachiko.agents.registry import AgentKind, AgentRegistry, build_registry
from hachiko.agents.sandboxed_local import SandboxedLocalAdapter

__all__ = [
    "AgentInput",
    "AgentKind",
    "AgentRegistry",
    "AgentResult",
    "BackoffConfig",
    "BaseAgentAdapter",
    "CloudCodexAdapter",
    "CloudDevinAdapter",
    "FileOperation",
    "HttpAgentAdapter",
    "MOCK_FAILURE_MESSAGE",
    "MockAgentAdapter",
    "SandboxedLocalAdapter",
    "build_registry",
    "ensure_disjoint",
    "extract_file_operations",
    "map_http_error",
    "run_with_retries",
]
