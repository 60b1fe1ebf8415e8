"""
Change classification for selective cache invalidation.
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Deque, List, Optional, Set

from mindmap.models.change import ChangeImpact, ChangeType, DataChange, ProcessingPriority
from mindmap.services.mindmap_graph import MindMapGraph
from mindmap.utils.graph_traversal import degree_map, expand_nodes

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000
HUB_DEGREE = 4

_PRIORITIES = {
    ChangeType.ANNOTATION_EDIT: ProcessingPriority.USER_INTERACTION,
    ChangeType.NEW_ITEM: ProcessingPriority.NEW_IMPORT,
    ChangeType.DELETED_ITEM: ProcessingPriority.NEW_IMPORT,
    ChangeType.BULK_IMPORT: ProcessingPriority.OPTIMIZATION,
}

_FULL_REGENERATION = {ChangeType.NEW_ITEM, ChangeType.BULK_IMPORT}


class ChangeTracker:
    """Classifies change events and keeps a bounded history."""

    def __init__(self, history_limit: int = HISTORY_LIMIT, hub_degree: int = HUB_DEGREE) -> None:
        self.history: Deque[DataChange] = deque(maxlen=history_limit)
        self.hub_degree = hub_degree
        self._pending: Set[str] = set()

    def classify(self, change: DataChange, graph: Optional[MindMapGraph] = None) -> ChangeImpact:
        return ChangeImpact(
            change=change,
            affected_node_ids=self.affected_nodes(change, graph),
            priority=_PRIORITIES[change.type],
            full_regeneration=change.type in _FULL_REGENERATION,
        )

    def track(self, change: DataChange, graph: Optional[MindMapGraph] = None) -> ChangeImpact:
        """Record a change and return its impact."""
        impact = self.classify(change, graph)
        self.history.append(change)
        self._pending |= impact.affected_node_ids
        logger.info(
            "[ChangeTracker] %s: %d affected nodes, priority=%s",
            change.type.value,
            len(impact.affected_node_ids),
            impact.priority.value,
        )
        return impact

    def affected_nodes(self, change: DataChange, graph: Optional[MindMapGraph] = None) -> Set[str]:
        ids = set(change.item_ids)
        if graph is None:
            return ids
        neighbors = graph.neighbor_ids
        if change.type in (ChangeType.NEW_ITEM, ChangeType.DELETED_ITEM):
            return expand_nodes(ids, neighbors, depth=2)
        if change.type == ChangeType.ANNOTATION_EDIT:
            return expand_nodes(ids, neighbors, depth=1)
        return ids | self.hub_nodes(graph)

    def hub_nodes(self, graph: MindMapGraph) -> Set[str]:
        degrees = degree_map(graph.node_ids(), graph.neighbor_ids)
        return {node_id for node_id, degree in degrees.items() if degree >= self.hub_degree}

    def pending_nodes(self) -> Set[str]:
        return set(self._pending)

    def clear_pending(self) -> None:
        self._pending.clear()

    def changes_since(self, timestamp) -> List[DataChange]:
        return [change for change in self.history if change.timestamp > timestamp]
