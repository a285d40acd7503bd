"""YAML frontmatter split/serialize helpers for migration plan documents."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Final

import yaml

_FENCE: Final[str] = "---"
_FRONTMATTER_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\A---[ \t]*\r?\n(?P<header>.*?)(?:\r?\n)?^---[ \t]*(?:\r?\n|\Z)(?P<body>.*)\Z",
    re.DOTALL | re.MULTILINE,
)


class FrontmatterSyntaxError(ValueError):
    """Raised when a plan document has a missing or undecodable frontmatter block."""


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """
    Split ``text`` into the decoded YAML header and the Markdown body.

    The header must be the first thing in the document, fenced by ``---`` lines,
    and decode to a mapping.
    """
    match = _FRONTMATTER_PATTERN.match(text.lstrip("﻿"))
    if match is None:
        raise FrontmatterSyntaxError("missing '---' fenced frontmatter block")

    try:
        data = yaml.safe_load(match.group("header"))
    except yaml.YAMLError as exc:
        raise FrontmatterSyntaxError(f"YAML error: {_yaml_reason(exc)}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrontmatterSyntaxError(
            f"frontmatter must be a mapping, got {type(data).__name__}"
        )
    return data, match.group("body")


def dump_frontmatter(data: Mapping[str, Any]) -> str:
    """Render ``data`` as a fenced YAML block, dropping ``None`` values at every level."""
    cleaned = _strip_none(dict(data))
    rendered = yaml.safe_dump(
        cleaned,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return f"{_FENCE}\n{rendered}{_FENCE}\n"


def _strip_none(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _strip_none(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [_strip_none(item) for item in value if item is not None]
    return value


def _yaml_reason(exc: yaml.YAMLError) -> str:
    problem = getattr(exc, "problem", None)
    mark = getattr(exc, "problem_mark", None)
    if problem and mark is not None:
        return f"{problem} (line {mark.line + 1}, column {mark.column + 1})"
    return " ".join(str(exc).split())


__all__ = ["FrontmatterSyntaxError", "dump_frontmatter", "split_frontmatter"]
