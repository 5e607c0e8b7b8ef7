"""Dependency graph of build tasks.

Edges point from a dependency to its dependent: ``("compile", "test")`` means
``test`` needs ``compile``. Every traversal is deterministic; ties between
task ids are broken lexically.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from heapq import heapify, heappop, heappush

from buildgate.domain.errors import ConfigurationError


class CycleError(ConfigurationError):
    """The task graph has at least one dependency cycle."""

    def __init__(self, cycles: Iterable[Sequence[str]]) -> None:
        self.cycles: tuple[tuple[str, ...], ...] = tuple(tuple(cycle) for cycle in cycles)
        shown = "; ".join(" -> ".join(cycle) for cycle in self.cycles[:3])
        if len(self.cycles) > 3:
            shown += "; ..."
        super().__init__(f"task graph has a dependency cycle: {shown or 'unknown'}")


class TaskGraph:
    """Task ids plus ``needs``/``feeds`` adjacency in both directions."""

    __slots__ = ("_needs", "_feeds")

    def __init__(
        self,
        nodes: Iterable[str] | None = None,
        edges: Iterable[tuple[str, str]] | None = None,
    ) -> None:
        self._needs: dict[str, set[str]] = {}
        self._feeds: dict[str, set[str]] = {}
        for node_id in nodes or ():
            self.add_node(node_id)
        for dependency, dependent in edges or ():
            self.add_edge(dependency, dependent)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._needs

    def __len__(self) -> int:
        return len(self._needs)

    @property
    def nodes(self) -> tuple[str, ...]:
        return tuple(sorted(self._needs))

    @property
    def edges(self) -> tuple[tuple[str, str], ...]:
        """``(dependency, dependent)`` pairs, sorted."""
        return tuple(
            sorted((dependency, node) for node, needs in self._needs.items() for dependency in needs)
        )

    def add_node(self, node_id: str) -> None:
        if not isinstance(node_id, str) or not node_id.strip():
            raise ConfigurationError("task id must be a non-empty string")
        self._needs.setdefault(node_id, set())
        self._feeds.setdefault(node_id, set())

    def add_edge(self, dependency: str, dependent: str) -> None:
        """Record that ``dependent`` needs ``dependency``."""
        self.add_node(dependency)
        self.add_node(dependent)
        self._needs[dependent].add(dependency)
        self._feeds[dependency].add(dependent)

    def topological_sort(self) -> tuple[str, ...]:
        """Kahn's algorithm with a lexical min-heap; raises ``CycleError``."""
        remaining = {node: len(needs) for node, needs in self._needs.items()}
        heap = [node for node, count in remaining.items() if count == 0]
        heapify(heap)
        order: list[str] = []
        while heap:
            node = heappop(heap)
            order.append(node)
            for dependent in self._feeds[node]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heappush(heap, dependent)
        if len(order) < len(self._needs):
            raise CycleError(self.detect_cycles())
        return tuple(order)

    def detect_cycles(self) -> tuple[tuple[str, ...], ...]:
        """Closed cycle paths such as ``("a", "b", "a")``, each starting at its smallest id."""

        found: set[tuple[str, ...]] = set()
        finished: set[str] = set()
        path: list[str] = []
        on_path: dict[str, int] = {}

        def visit(node: str) -> None:
            on_path[node] = len(path)
            path.append(node)
            for dependent in sorted(self._feeds[node]):
                if dependent in on_path:
                    found.add(_rotate_cycle(path[on_path[dependent] :]))
                elif dependent not in finished:
                    visit(dependent)
            path.pop()
            del on_path[node]
            finished.add(node)

        for start in sorted(self._needs):
            if start not in finished:
                visit(start)
        return tuple(sorted(found))

    def get_dependents(self, node_id: str, *, transitive: bool = False) -> tuple[str, ...]:
        return self._walk(node_id, self._feeds, transitive=transitive)

    def downstream_depth(self) -> dict[str, int]:
        """Longest chain of dependents starting at each task, the task itself counted."""
        depth: dict[str, int] = {}
        for node in reversed(self.topological_sort()):
            depth[node] = 1 + max((depth[child] for child in self._feeds[node]), default=0)
        return depth

    def critical_path(self) -> tuple[str, ...]:
        depth = self.downstream_depth()
        candidates = set(depth)
        path: list[str] = []
        while candidates:
            node = min(candidates, key=lambda item: (-depth[item], item))
            path.append(node)
            candidates = self._feeds[node]
        return tuple(path)

    def _walk(
        self, node_id: str, adjacency: dict[str, set[str]], *, transitive: bool
    ) -> tuple[str, ...]:
        if node_id not in adjacency:
            raise KeyError(f"unknown task: {node_id}")
        if not transitive:
            return tuple(sorted(adjacency[node_id]))
        seen: set[str] = set()
        frontier = set(adjacency[node_id])
        while frontier:
            seen |= frontier
            frontier = {nxt for node in frontier for nxt in adjacency[node]} - seen
        return tuple(sorted(seen))


def _rotate_cycle(members: Sequence[str]) -> tuple[str, ...]:
    start = members.index(min(members))
    rotated = tuple(members[start:]) + tuple(members[:start])
    return rotated + (rotated[0],)


__all__ = ["CycleError", "TaskGraph"]
