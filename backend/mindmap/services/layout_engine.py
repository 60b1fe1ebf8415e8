"""
Force-directed layout engine.

Repulsion acts between every pair of nodes closer than their combined radius
plus a margin; attraction pulls connected nodes towards a rest distance
proportional to the connection strength. Velocities are damped each step.
Any non-finite intermediate value discards that node's update for the
iteration, so positions and velocities stay finite.
"""
from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from mindmap.models.layout import Bounds, LayoutConfig, LayoutResult
from mindmap.models.mindmap import MindMapConnection, MindMapNode
from mindmap.utils.geometry import ZERO, Vector, is_finite

logger = logging.getLogger(__name__)

NodeTable = Dict[str, MindMapNode]
IterationHook = Callable[[int, int, NodeTable], Awaitable[None]]


def _position(node: MindMapNode) -> Vector:
    return Vector(node.x, node.y)


class ForceDirectedLayoutEngine:
    """Stateless physics simulator; every call works on the tables it is given."""

    def __init__(self, config: Optional[LayoutConfig] = None) -> None:
        self.config = config or LayoutConfig()

    def repulsion_force(self, node: MindMapNode, other: MindMapNode) -> Optional[Vector]:
        """Force pushing `node` away from `other`; None when non-finite."""
        position = _position(node)
        other_position = _position(other)
        distance = position.distance_to(other_position)
        if not math.isfinite(distance):
            return None
        min_distance = node.radius + other.radius + self.config.margin
        if distance >= min_distance:
            return ZERO
        direction = position.direction_to(other_position)
        if direction is None:
            return None
        magnitude = self.config.repulsion_constant / (distance * distance + 1)
        if not math.isfinite(magnitude):
            return None
        force = direction.scaled(-magnitude)
        return force if force.is_finite else None

    def attraction_force(
        self,
        node: MindMapNode,
        other: MindMapNode,
        strength: float,
    ) -> Optional[Vector]:
        """Force pulling `node` towards a connected `other`; None when non-finite."""
        if strength <= 0:
            return ZERO
        position = _position(node)
        other_position = _position(other)
        distance = position.distance_to(other_position)
        if not math.isfinite(distance):
            return None
        rest_distance = self.config.max_distance * strength
        if distance <= rest_distance:
            return ZERO
        direction = position.direction_to(other_position)
        if direction is None:
            return None
        magnitude = self.config.attraction_constant * strength * (distance - rest_distance)
        if not math.isfinite(magnitude):
            return None
        force = direction.scaled(magnitude)
        return force if force.is_finite else None

    def _adjacency(
        self,
        nodes: NodeTable,
        connections: Sequence[MindMapConnection],
    ) -> Dict[str, List[MindMapConnection]]:
        adjacency: Dict[str, List[MindMapConnection]] = {node_id: [] for node_id in nodes}
        for connection in connections:
            if connection.source_id in adjacency and connection.target_id in adjacency:
                adjacency[connection.source_id].append(connection)
                if connection.target_id != connection.source_id:
                    adjacency[connection.target_id].append(connection)
        return adjacency

    def _step_node(
        self,
        node: MindMapNode,
        nodes: NodeTable,
        incident: Sequence[MindMapConnection],
        bounds: Bounds,
    ) -> Optional[MindMapNode]:
        if not is_finite(node.x, node.y, node.vx, node.vy):
            return None

        total = ZERO
        for other_id, other in nodes.items():
            if other_id == node.id:
                continue
            force = self.repulsion_force(node, other)
            if force is None:
                return None
            total = total.add(force)
            if not total.is_finite:
                return None

        for connection in incident:
            other = nodes.get(connection.other_end(node.id))
            if other is None or other.id == node.id:
                continue
            force = self.attraction_force(node, other, connection.strength)
            if force is None:
                return None
            total = total.add(force)
            if not total.is_finite:
                return None

        dt = self.config.time_step
        velocity = Vector(node.vx, node.vy).add(total.scaled(dt)).scaled(self.config.damping_factor)
        if not velocity.is_finite:
            return None
        x = node.x + velocity.x * dt
        y = node.y + velocity.y * dt
        if not is_finite(x, y):
            return None
        x, y = bounds.clamp(x, y)
        if not is_finite(x, y):
            return None
        return node.model_copy(update={"x": x, "y": y, "vx": velocity.x, "vy": velocity.y})

    def perform_iteration(
        self,
        nodes: NodeTable,
        connections: Sequence[MindMapConnection],
        bounds: Bounds,
    ) -> Tuple[NodeTable, int]:
        """One physics step. Returns (new table, number of discarded updates).

        Forces are evaluated against the incoming table; dragging nodes are
        copied through untouched but still act on the others.
        """
        adjacency = self._adjacency(nodes, connections)
        updated: NodeTable = {}
        skipped = 0
        for node_id, node in nodes.items():
            if node.is_dragging:
                updated[node_id] = node
                continue
            stepped = self._step_node(node, nodes, adjacency.get(node_id, []), bounds)
            if stepped is None:
                skipped += 1
                updated[node_id] = node
            else:
                updated[node_id] = stepped
        return updated, skipped

    @staticmethod
    def mean_velocity(nodes: NodeTable) -> float:
        if not nodes:
            return 0.0
        total = sum(math.hypot(node.vx, node.vy) for node in nodes.values())
        return total / len(nodes)

    def has_converged(self, nodes: NodeTable) -> bool:
        return self.mean_velocity(nodes) < self.config.convergence_threshold

    @staticmethod
    def set_node_position(nodes: NodeTable, node_id: str, x: float, y: float) -> bool:
        """Place a node directly, zeroing its velocity."""
        if not is_finite(x, y):
            logger.warning("[Layout] rejected non-finite position for %s", node_id)
            return False
        node = nodes.get(node_id)
        if node is None:
            return False
        nodes[node_id] = node.model_copy(update={"x": x, "y": y, "vx": 0.0, "vy": 0.0})
        return True

    async def run(
        self,
        nodes: NodeTable,
        connections: Sequence[MindMapConnection],
        bounds: Optional[Bounds] = None,
        on_iteration: Optional[IterationHook] = None,
    ) -> Tuple[NodeTable, LayoutResult]:
        """Iterate to convergence or the iteration cap.

        `on_iteration(iteration, cap, table)` runs after every step and may
        mutate the table in place (e.g. to mirror drag state) or raise to stop.
        Control is yielded to the event loop every `yield_interval` iterations.
        Returns (final table, LayoutResult).
        """
        bounds = bounds or Bounds()
        current: NodeTable = dict(nodes)
        result = LayoutResult()
        if not current:
            result.converged = True
            return current, result

        cap = self.config.iteration_cap(len(current))
        for index in range(cap):
            iteration = index + 1
            current, skipped = self.perform_iteration(current, connections, bounds)
            result.iterations = iteration
            result.skipped_updates += skipped
            if on_iteration is not None:
                await on_iteration(iteration, cap, current)
            if iteration % self.config.yield_interval == 0:
                await asyncio.sleep(0)
            if (
                iteration >= self.config.convergence_check_interval
                and iteration % self.config.convergence_check_interval == 0
                and self.has_converged(current)
            ):
                logger.debug("[Layout] converged early at iteration %d", iteration)
                break

        result.mean_velocity = self.mean_velocity(current)
        result.converged = result.mean_velocity < self.config.convergence_threshold
        return current, result
