"""
hachiko — policy package

File: src/hachiko/policy/__init__.py
Last updated: 2026-10-19

Purpose
- Decide, before any mutation, whether an agent may touch a set of files or run a command.

Functional requirements
- Every violated rule is reported; evaluation never stops at the first.
"""

from __future__ import annotations

from hachiko.policy.engine import (
    DEFAULT_DANGEROUS_COMMANDS,
    DEFAULT_MAX_FILE_SIZE_BYTES,
    PolicyConfig,
    PolicyDecision,
    PolicyEngine,
    PolicyOperation,
    glob_match,
)

__all__ = [
    "DEFAULT_DANGEROUS_COMMANDS",
    "DEFAULT_MAX_FILE_SIZE_BYTES",
    "PolicyConfig",
    "PolicyDecision",
    "PolicyEngine",
    "PolicyOperation",
    "glob_match",
]
