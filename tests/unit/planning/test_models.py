"""Unit tests for planning.models and the frontmatter round-trip."""

from __future__ import annotations

from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from hachiko.planning.models import (
    ChunkStrategy,
    FrontmatterError,
    MigrationFrontmatter,
    MigrationStep,
    MigrationStrategy,
    PlanStatus,
    RollbackStep,
)
from hachiko.planning.plans import (
    generate_normalized_frontmatter,
    parse_text,
    serialize_frontmatter,
)

_CONFIG = {"defaults": {"agent": "mock", "pr_parallelism": 2}}

_text = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N", "P", "S"),
        whitelist_characters=" ",
        max_codepoint=0x2FFF,
    ),
    min_size=1,
    max_size=24,
).filter(lambda value: value.strip() != "")
_identifier = st.from_regex(r"[a-z0-9][a-z0-9._-]{0,15}", fullmatch=True)


@st.composite
def _frontmatters(draw: st.DrawFn) -> MigrationFrontmatter:
    step_ids = draw(st.lists(_identifier, min_size=0, max_size=4, unique=True))
    steps = tuple(
        MigrationStep(
            id=step_id,
            description=draw(_text),
            expected_pr=draw(st.booleans()),
            agent=draw(st.none() | _identifier),
            timeout=draw(st.none() | st.integers(min_value=1, max_value=3600)),
            depends_on=tuple(draw(st.lists(st.sampled_from(step_ids), max_size=2, unique=True))),
            chunks=tuple(draw(st.lists(_identifier, max_size=3, unique=True))),
            prompt=draw(st.none() | _text),
            files=tuple(draw(st.lists(_text, max_size=2))),
        )
        for step_id in step_ids
    )
    return MigrationFrontmatter(
        id=draw(_identifier),
        title=draw(_text),
        owner=draw(_text),
        status=draw(st.sampled_from(list(PlanStatus))),
        agent=draw(st.none() | _identifier),
        strategy=MigrationStrategy(
            chunk_by=draw(st.none() | st.sampled_from(list(ChunkStrategy))),
            max_open_prs=draw(st.none() | st.integers(min_value=1, max_value=10)),
        ),
        checks=tuple(draw(st.lists(_text, max_size=3))),
        rollback=tuple(
            RollbackStep(description=description, command=command)
            for description, command in draw(
                st.lists(st.tuples(_text, st.none() | _text), max_size=2)
            )
        ),
        success_criteria=tuple(draw(st.lists(_text, max_size=2))),
        steps=steps,
        depends_on=tuple(draw(st.lists(_identifier, max_size=2, unique=True))),
        touches=tuple(draw(st.lists(_text, max_size=2))),
        attempts=draw(st.integers(min_value=0, max_value=5)),
        last_error=draw(st.none() | _text),
        current_step=draw(st.none() | _identifier),
    )


@settings(max_examples=75, deadline=None)
@given(frontmatter=_frontmatters())
def test_serialized_normalized_frontmatter_parses_back_unchanged(
    frontmatter: MigrationFrontmatter,
) -> None:
    normalized = generate_normalized_frontmatter(frontmatter, _CONFIG)
    text = serialize_frontmatter(normalized) + "\n# Plan\n\nBody text.\n"

    parsed = parse_text(text, Path("migrations/plan.md"))

    assert parsed.plan.frontmatter == normalized


def test_mapping_uses_camel_case_wire_keys() -> None:
    frontmatter = MigrationFrontmatter.from_mapping(
        {
            "id": "react-18",
            "title": "Upgrade React",
            "owner": "@web",
            "strategy": {"chunkBy": "package", "maxOpenPRs": 3},
            "successCriteria": ["tests pass"],
            "dependsOn": ["node-20"],
            "lastError": "boom",
            "currentStep": "implement",
            "steps": [
                {"id": "detect", "description": "Find usages", "expectedPR": False},
                {"id": "implement", "description": "Apply", "dependsOn": ["detect"]},
            ],
        }
    )

    assert frontmatter.strategy == MigrationStrategy(ChunkStrategy.PACKAGE, 3)
    assert frontmatter.success_criteria == ("tests pass",)
    assert frontmatter.depends_on == ("node-20",)
    assert frontmatter.last_error == "boom"
    assert frontmatter.current_step == "implement"
    assert frontmatter.status is PlanStatus.DRAFT
    assert frontmatter.steps[0].expected_pr is False
    assert frontmatter.steps[1].expected_pr is True
    assert frontmatter.steps[1].depends_on == ("detect",)

    payload = frontmatter.to_dict()
    assert payload["strategy"] == {"chunkBy": "package", "maxOpenPRs": 3}
    assert payload["steps"][1] == {
        "id": "implement",
        "description": "Apply",
        "expectedPR": True,
        "dependsOn": ["detect"],
    }
    assert "agent" not in payload


def test_every_field_problem_is_reported_together() -> None:
    with pytest.raises(FrontmatterError) as error:
        MigrationFrontmatter.from_mapping(
            {
                "id": "x",
                "owner": 7,
                "status": "exploded",
                "strategy": {"maxOpenPRs": 11},
                "steps": [{"id": "a"}],
            }
        )

    issues = error.value.issues
    assert "title: missing required field" in issues
    assert "owner: expected string, got int" in issues
    assert any(issue.startswith("status: invalid value 'exploded'") for issue in issues)
    assert "strategy.maxOpenPRs: must be <= 10" in issues
    assert "steps[0].description: missing required field" in issues


def test_non_mapping_frontmatter_is_rejected() -> None:
    with pytest.raises(FrontmatterError, match="expected mapping"):
        MigrationFrontmatter.from_mapping(["id"])


def test_strategy_bounds_are_enforced_on_construction() -> None:
    with pytest.raises(ValueError):
        MigrationStrategy(max_open_prs=0)


def test_get_step_raises_for_unknown_step() -> None:
    parsed = parse_text(
        "---\nid: p\ntitle: T\nowner: o\nsteps:\n  - id: a\n    description: A\n---\nBody\n",
        Path("p.md"),
    )

    assert parsed.plan.get_step("a").description == "A"
    with pytest.raises(KeyError):
        parsed.plan.get_step("b")
