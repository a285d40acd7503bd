"""Deterministic adjacency-list dependency graph for plan steps."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence, Set
from heapq import heapify, heappop, heappush


class CycleError(ValueError):
    """Raised when a cycle is detected in the dependency graph."""

    cycles: tuple[tuple[str, ...], ...]

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        normalized: tuple[tuple[str, ...], ...] = tuple(tuple(path) for path in cycles)
        self.cycles = normalized

        if not normalized:
            message = "Dependency graph contains at least one cycle."
        else:
            preview = ", ".join(" -> ".join(path) for path in normalized[:3])
            suffix = "..." if len(normalized) > 3 else ""
            message = f"Dependency graph contains cycle(s): {preview}{suffix}"
        super().__init__(message)


class TaskGraph:
    """
    Directed graph over step IDs with edges ``dependency -> dependent``.

    Traversal order is deterministic: nodes are visited by their ordinal (the
    position they were first added in) so that results follow plan order.
    """

    __slots__ = ("_ordinals", "_children", "_parents")

    def __init__(
        self,
        nodes: Iterable[str] | None = None,
        edges: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._ordinals: dict[str, int] = {}
        self._children: dict[str, set[str]] = {}
        self._parents: dict[str, set[str]] = {}

        if nodes is not None:
            for node_id in nodes:
                self.add_node(node_id)

        if edges is not None:
            for parent, child in edges:
                self.add_edge(parent, child)

    @classmethod
    def from_dependencies(cls, dependencies: Mapping[str, Sequence[str]]) -> TaskGraph:
        """
        Build a graph from ``node -> declared dependencies``.

        Dependencies naming nodes absent from ``dependencies`` are ignored; callers
        report those as dangling references before building the graph.
        """
        graph = cls(nodes=dependencies)
        for node_id, declared in dependencies.items():
            for dependency in declared:
                if dependency in graph._ordinals:
                    graph.add_edge(dependency, node_id)
        return graph

    @property
    def nodes(self) -> tuple[str, ...]:
        """All node IDs in ordinal order."""
        return self._ordered(self._ordinals)

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """All edges as ``(dependency, dependent)`` pairs in ordinal order."""
        return tuple(
            (parent, child)
            for parent in self.nodes
            for child in self._ordered(self._children[parent])
        )

    def add_node(self, node_id: str) -> None:
        """Add a node if it does not already exist."""
        self._validate_node_id(node_id)
        if node_id in self._ordinals:
            return

        self._ordinals[node_id] = len(self._ordinals)
        self._children[node_id] = set()
        self._parents[node_id] = set()

    def add_edge(self, parent: str, child: str) -> None:
        """Add a directed edge ``parent -> child`` (``child`` depends on ``parent``)."""
        self.add_node(parent)
        self.add_node(child)
        self._children[parent].add(child)
        self._parents[child].add(parent)

    def topological_sort(self) -> tuple[str, ...]:
        """Return a topological ordering, ties broken by ordinal, or raise ``CycleError``."""
        indegree: dict[str, int] = {node: len(self._parents[node]) for node in self._ordinals}
        ready: list[tuple[int, str]] = [
            (self._ordinals[node], node) for node, degree in indegree.items() if degree == 0
        ]
        heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heappop(ready)
            order.append(node)

            for child in self._children[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heappush(ready, (self._ordinals[child], child))

        if len(order) != len(self._ordinals):
            raise CycleError(self.detect_cycles())

        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """
        Detect directed cycles with an iterative three-state DFS.

        State ``0`` is unvisited, ``1`` is on the current path and ``2`` is done.
        Only an edge into a state-``1`` node closes a cycle, so shared
        sub-dependencies (diamonds) are never reported. Each cycle is returned
        once, as a closed path rotated to start at its smallest node, e.g.
        ``("A", "B", "C", "A")``.
        """
        state: dict[str, int] = {}
        stack: list[str] = []
        stack_index: dict[str, int] = {}
        cycles: dict[tuple[str, ...], None] = {}

        for start in self.nodes:
            if state.get(start, 0) != 0:
                continue

            state[start] = 1
            stack.append(start)
            stack_index[start] = 0
            frames: list[tuple[str, Iterator[str]]] = [(start, self._iter_children(start))]

            while frames:
                node, child_iter = frames[-1]

                try:
                    child = next(child_iter)
                except StopIteration:
                    frames.pop()
                    state[node] = 2
                    stack.pop()
                    del stack_index[node]
                    continue

                child_state = state.get(child, 0)
                if child_state == 0:
                    state[child] = 1
                    stack_index[child] = len(stack)
                    stack.append(child)
                    frames.append((child, self._iter_children(child)))
                    continue

                if child_state == 1:
                    cycle = tuple(stack[stack_index[child] :] + [child])
                    cycles[self._canonicalize_cycle(cycle)] = None

        # A node whose only route back into its cycle passes through an already
        # finished node closes no back-edge of its own; recover one cycle for it.
        for node in self._uncovered_cycle_candidates(cycles):
            cycle = self._shortest_cycle_through(node)
            if cycle is not None:
                cycles[self._canonicalize_cycle(cycle)] = None

        return tuple(sorted(cycles))

    def cyclic_nodes(self) -> tuple[str, ...]:
        """Return every node that lies on at least one cycle, in ordinal order."""
        members = {node for cycle in self.detect_cycles() for node in cycle}
        return self._ordered(members)

    def get_dependencies(self, node_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        """Return direct or transitive dependencies for ``node_id``."""
        self._assert_node_exists(node_id)
        if not transitive:
            return self._ordered(self._parents[node_id])
        return self._transitive_closure(node_id, upstream=True)

    def get_dependents(self, node_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        """Return direct or transitive dependents for ``node_id``."""
        self._assert_node_exists(node_id)
        if not transitive:
            return self._ordered(self._children[node_id])
        return self._transitive_closure(node_id, upstream=False)

    def get_runnable(
        self,
        satisfied: Set[str],
        *,
        started: Set[str] = frozenset(),
    ) -> tuple[str, ...]:
        """
        Return nodes ready to run, in ordinal order.

        A node is runnable when it is neither satisfied nor started and every
        dependency is in ``satisfied``.
        """
        return tuple(
            node
            for node in self.nodes
            if node not in satisfied
            and node not in started
            and self._parents[node].issubset(satisfied)
        )

    def _iter_children(self, node_id: str) -> Iterator[str]:
        return iter(self._ordered(self._children[node_id]))

    def _ordered(self, node_ids: Iterable[str]) -> tuple[str, ...]:
        return tuple(sorted(node_ids, key=self._ordinals.__getitem__))

    def _transitive_closure(self, node_id: str, *, upstream: bool) -> tuple[str, ...]:
        return self._ordered(self._reach(self._parents if upstream else self._children, [node_id]))

    @staticmethod
    def _reach(adjacency: Mapping[str, set[str]], sources: Iterable[str]) -> set[str]:
        visited: set[str] = set()
        pending: list[str] = [neighbor for source in sources for neighbor in adjacency[source]]

        while pending:
            node = pending.pop()
            if node in visited:
                continue

            visited.add(node)
            pending.extend(neighbor for neighbor in adjacency[node] if neighbor not in visited)

        return visited

    def _uncovered_cycle_candidates(
        self,
        cycles: Mapping[tuple[str, ...], None],
    ) -> tuple[str, ...]:
        covered = {node for cycle in cycles for node in cycle}
        if not covered:
            return ()
        downstream = self._reach(self._children, covered)
        upstream = self._reach(self._parents, covered)
        return self._ordered((downstream & upstream) - covered)

    def _shortest_cycle_through(self, node_id: str) -> tuple[str, ...] | None:
        previous: dict[str, str] = {}
        frontier: list[str] = [node_id]
        while frontier:
            next_frontier: list[str] = []
            for current in frontier:
                for child in self._ordered(self._children[current]):
                    if child == node_id:
                        path = [current]
                        while path[-1] != node_id:
                            path.append(previous[path[-1]])
                        path.reverse()
                        return (*path, node_id)
                    if child in previous:
                        continue
                    previous[child] = current
                    next_frontier.append(child)
            frontier = next_frontier
        return None

    @staticmethod
    def _canonicalize_cycle(cycle: Sequence[str]) -> tuple[str, ...]:
        if len(cycle) < 2:
            raise ValueError("Cycle path must contain at least two nodes.")

        core = tuple(cycle[:-1])
        if len(core) == 1:
            return (core[0], core[0])

        best = core
        for offset in range(1, len(core)):
            rotated = core[offset:] + core[:offset]
            if rotated < best:
                best = rotated

        return best + (best[0],)

    @staticmethod
    def _validate_node_id(node_id: str) -> None:
        if not node_id:
            raise ValueError("Node ID must be non-empty.")

    def _assert_node_exists(self, node_id: str) -> None:
        if node_id not in self._ordinals:
            raise KeyError(f"Unknown node: {node_id}")


__all__ = ["CycleError", "TaskGraph"]
