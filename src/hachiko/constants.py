"""Stable constants shared across hachiko components."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Branch protocol.
BRANCH_PREFIX: Final[str] = "hachi"
COMMIT_MESSAGE_PREFIX: Final[str] = "Hachiko:"

# Tracking-record labels.
STATUS_LABEL_PREFIX: Final[str] = "hachiko:status:"
PLAN_LABEL_PREFIX: Final[str] = "hachiko:plan:"

# Dispatch contract.
DEFAULT_DISPATCH_EVENT_TYPE: Final[str] = "hachiko.run"
DEFAULT_PROMPT_CONFIG_PREFIX: Final[str] = "hachiko_prompts_"

# Plan discovery defaults.
DEFAULT_PLANS_DIRECTORY: Final[str] = "migrations/"
DEFAULT_PLAN_FILENAME_PATTERN: Final[str] = "*.md"
DEFAULT_EXCLUDED_DIRS: Final[tuple[str, ...]] = ("node_modules", ".git")

# Sandbox defaults.
CONTAINER_WORKSPACE_MOUNT: Final[PurePosixPath] = PurePosixPath("/workspace")
CONTAINER_REPO_MOUNT: Final[PurePosixPath] = PurePosixPath("/repo")
TIMEOUT_EXIT_CODE: Final[int] = 124
INSTRUCTIONS_FILENAME: Final[str] = ".hachiko-instructions.md"

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

__all__ = [
    "BRANCH_PREFIX",
    "COMMIT_MESSAGE_PREFIX",
    "CONFIG_SCHEMA_VERSION",
    "CONTAINER_REPO_MOUNT",
    "CONTAINER_WORKSPACE_MOUNT",
    "DEFAULT_DISPATCH_EVENT_TYPE",
    "DEFAULT_EXCLUDED_DIRS",
    "DEFAULT_PLANS_DIRECTORY",
    "DEFAULT_PLAN_FILENAME_PATTERN",
    "DEFAULT_PROMPT_CONFIG_PREFIX",
    "INSTRUCTIONS_FILENAME",
    "PLAN_LABEL_PREFIX",
    "STATUS_LABEL_PREFIX",
    "TIMEOUT_EXIT_CODE",
]
