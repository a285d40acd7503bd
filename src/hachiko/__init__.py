"""
hachiko — package root

File: src/hachiko/__init__.py
Last updated: 2026-10-19

Purpose
- Orchestrates multi-step code migrations carried out by pluggable coding agents.

What should be included in this file
- Version export and a minimal public surface.
- Import boundary rules: heavy submodules (httpx adapters, CLI) load lazily.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.4.0"

__all__ = ["__version__"]
