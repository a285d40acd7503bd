"""Step- and plan-level dependency validation built on ``TaskGraph``."""

from __future__ import annotations

from collections.abc import Sequence

from hachiko.planning.models import MigrationPlan
from hachiko.planning.task_graph import TaskGraph


def step_graph(plan: MigrationPlan) -> TaskGraph:
    """Graph of a plan's steps; dangling references are left out."""
    return TaskGraph.from_dependencies({step.id: step.depends_on for step in plan.steps})


def step_order(plan: MigrationPlan) -> tuple[str, ...]:
    """Steps in dependency order, ties broken by position; raises ``CycleError``."""
    return step_graph(plan).topological_sort()


def validate_dependencies(plans: Sequence[MigrationPlan]) -> list[str]:
    """
    Report every dependency violation across ``plans``.

    Per plan, every step cycle is reported once (self-dependency included) and
    every reference to an undeclared step is reported. Plan-level ``depends_on``
    is then checked across the whole set. Shared dependencies (diamonds) are
    not violations. An empty list means every graph is a DAG with no dangling
    references.
    """
    violations: list[str] = []

    for plan in plans:
        declared = set(plan.frontmatter.step_ids)
        for step in plan.steps:
            for dependency in step.depends_on:
                if dependency not in declared:
                    violations.append(
                        f'Plan "{plan.id}": step "{step.id}" depends on '
                        f'non-existent step "{dependency}"'
                    )
        for cycle in step_graph(plan).detect_cycles():
            violations.append(f'Plan "{plan.id}": circular step dependency: {" -> ".join(cycle)}')

    plan_ids = {plan.id for plan in plans}
    for plan in plans:
        for dependency in plan.frontmatter.depends_on:
            if dependency not in plan_ids:
                violations.append(f'Plan "{plan.id}" depends on non-existent plan "{dependency}"')

    plan_graph = TaskGraph.from_dependencies(
        {plan.id: plan.frontmatter.depends_on for plan in plans}
    )
    for plan_id in plan_graph.cyclic_nodes():
        violations.append(f'Circular dependency detected involving plan "{plan_id}"')

    return violations


__all__ = ["step_graph", "step_order", "validate_dependencies"]
