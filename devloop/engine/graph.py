"""Cycle detection for unweighted directed dependency graphs."""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Mapping, Sequence
from typing import TypeVar

NodeT = TypeVar("NodeT", bound=Hashable)


def build_dependency_graph(
    nodes: Iterable[tuple[NodeT, Iterable[NodeT]]],
) -> dict[NodeT, list[NodeT]]:
    """Build an adjacency map, dropping edges to nodes outside the graph.

    Dangling references are reported separately as unresolved dependencies,
    so they are not edges for cycle purposes.
    """
    pairs = [(node, list(targets)) for node, targets in nodes]
    known = {node for node, _ in pairs}
    graph: dict[NodeT, list[NodeT]] = {}
    for node, targets in pairs:
        edges = graph.setdefault(node, [])
        for target in targets:
            if target in known and target not in edges:
                edges.append(target)
    return graph


def find_cycle(graph: Mapping[NodeT, Sequence[NodeT]]) -> list[NodeT] | None:
    """Return one cycle as a closed path (first node repeated last), or None.

    Depth-first search with an explicit recursion stack: a node reached
    again while still on the current path closes a cycle. Iterative, so deep
    chains do not hit the interpreter recursion limit.
    """
    visited: set[NodeT] = set()
    for root in graph:
        if root in visited:
            continue
        path: list[NodeT] = [root]
        on_path: set[NodeT] = {root}
        visited.add(root)
        iterators = [iter(graph.get(root, ()))]
        while iterators:
            advanced = False
            for neighbor in iterators[-1]:
                if neighbor in on_path:
                    start = path.index(neighbor)
                    return [*path[start:], neighbor]
                if neighbor in visited:
                    continue
                visited.add(neighbor)
                path.append(neighbor)
                on_path.add(neighbor)
                iterators.append(iter(graph.get(neighbor, ())))
                advanced = True
                break
            if not advanced:
                iterators.pop()
                on_path.discard(path.pop())
    return None


def has_cycle(graph: Mapping[NodeT, Sequence[NodeT]]) -> bool:
    """Return whether the graph contains any directed cycle."""
    return find_cycle(graph) is not None


def format_cycle(cycle: Sequence[object]) -> str:
    """Render a cycle path as ``a -> b -> a``."""
    return " -> ".join(str(node) for node in cycle)
