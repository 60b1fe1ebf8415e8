"""
Graph traversal helpers.
"""
from typing import Callable, Dict, Iterable, List, Set

NeighborFn = Callable[[str], Iterable[str]]


def connected_component(start: str, neighbors: NeighborFn, visited: Set[str]) -> List[str]:
    """Collect the component containing `start` with an explicit-stack DFS.

    `visited` is updated in place so callers can sweep every node once.
    """
    component: List[str] = []
    stack = [start]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        component.append(current)
        for neighbor_id in neighbors(current):
            if neighbor_id not in visited:
                stack.append(neighbor_id)
    return component


def connected_components(
    node_ids: Iterable[str],
    neighbors: NeighborFn,
    min_size: int = 1,
) -> List[List[str]]:
    """All components in node order, keeping those with at least `min_size` members."""
    visited: Set[str] = set()
    components: List[List[str]] = []
    for node_id in node_ids:
        if node_id in visited:
            continue
        component = connected_component(node_id, neighbors, visited)
        if len(component) >= min_size:
            components.append(component)
    return components


def expand_nodes(seeds: Iterable[str], neighbors: NeighborFn, depth: int = 1) -> Set[str]:
    """Seeds plus every node within `depth` hops."""
    if depth < 0:
        return set()
    visited = set(seeds)
    frontier = set(visited)
    for _ in range(depth):
        next_frontier: Set[str] = set()
        for node_id in frontier:
            next_frontier.update(neighbors(node_id))
        next_frontier -= visited
        if not next_frontier:
            break
        visited |= next_frontier
        frontier = next_frontier
    return visited


def degree_map(node_ids: Iterable[str], neighbors: NeighborFn) -> Dict[str, int]:
    return {node_id: len(list(neighbors(node_id))) for node_id in node_ids}
