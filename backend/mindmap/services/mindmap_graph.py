"""
In-memory mind map graph: node table, connections and clusters.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

import networkx as nx

from mindmap.models.mindmap import (
    MindMapCluster,
    MindMapConnection,
    MindMapNode,
    SourceItem,
    StoredConnection,
    StoredLayout,
    StoredNode,
)
from mindmap.utils.geometry import is_finite

logger = logging.getLogger(__name__)


class MindMapGraph:
    """NetworkX-backed node/connection container.

    Nodes are keyed by id; connections are undirected for neighbourhood queries
    but keep their source/target orientation. A connection is only stored when
    both endpoints already exist.
    """

    def __init__(self) -> None:
        self.graph = nx.MultiGraph()
        self._connection_index: Dict[str, Tuple[str, str, str]] = {}
        self.clusters: List[MindMapCluster] = []

    def __len__(self) -> int:
        return self.graph.number_of_nodes()

    def add_node(self, node: MindMapNode) -> None:
        """Add or replace a node."""
        if node.id in self.graph:
            self.graph.nodes[node.id].clear()
        self.graph.add_node(node.id, **node.model_dump())

    def add_connection(self, connection: MindMapConnection) -> bool:
        """Add a connection; no-op when an endpoint is missing."""
        if connection.source_id not in self.graph or connection.target_id not in self.graph:
            logger.debug(
                "dropping connection with missing endpoint: %s -> %s",
                connection.source_id,
                connection.target_id,
            )
            return False
        key = connection.id
        if key in self._connection_index:
            logger.debug("replacing duplicate connection %s", key)
            self.remove_connection(key)
        self.graph.add_edge(
            connection.source_id,
            connection.target_id,
            key=key,
            **connection.model_dump(),
        )
        self._connection_index[key] = (connection.source_id, connection.target_id, key)
        return True

    def get_node(self, node_id: str) -> Optional[MindMapNode]:
        if node_id not in self.graph:
            return None
        return MindMapNode(**self.graph.nodes[node_id])

    def has_node(self, node_id: str) -> bool:
        return node_id in self.graph

    def update_node(self, node_id: str, **updates) -> Optional[MindMapNode]:
        """Update node attributes, validating the result."""
        if node_id not in self.graph:
            return None
        data = dict(self.graph.nodes[node_id])
        data.update(updates)
        node = MindMapNode(**data)
        self.graph.nodes[node_id].update(node.model_dump())
        return node

    def set_node_position(self, node_id: str, x: float, y: float) -> bool:
        """Write a position directly and zero the velocity."""
        if not is_finite(x, y):
            logger.warning("rejected non-finite position for %s: (%s, %s)", node_id, x, y)
            return False
        if node_id not in self.graph:
            logger.warning("node %s not found", node_id)
            return False
        self.graph.nodes[node_id].update({"x": x, "y": y, "vx": 0.0, "vy": 0.0})
        return True

    def write_physics_state(self, node_id: str, x: float, y: float, vx: float, vy: float) -> bool:
        """Commit one physics step for a node; non-finite values are ignored."""
        if node_id not in self.graph or not is_finite(x, y, vx, vy):
            return False
        self.graph.nodes[node_id].update({"x": x, "y": y, "vx": vx, "vy": vy})
        return True

    def load_from(self, other: "MindMapGraph") -> None:
        """Replace this graph's contents with a copy of `other`."""
        self.graph = other.graph.copy()
        self._connection_index = dict(other._connection_index)
        self.clusters = list(other.clusters)

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every connection referencing it."""
        if node_id not in self.graph:
            return
        self.graph.remove_node(node_id)
        self._connection_index = {
            key: entry for key, entry in self._connection_index.items()
            if entry[0] != node_id and entry[1] != node_id
        }
        self.clusters = [
            cluster for cluster in self.clusters if node_id not in cluster.node_ids
        ]

    def remove_connection(self, connection_id: str) -> None:
        entry = self._connection_index.pop(connection_id, None)
        if not entry:
            return
        source, target, key = entry
        if self.graph.has_edge(source, target, key):
            self.graph.remove_edge(source, target, key)

    def remove_all(self) -> None:
        self.graph.clear()
        self._connection_index = {}
        self.clusters = []

    def clear_connections(self) -> None:
        self.graph.remove_edges_from(list(self.graph.edges(keys=True)))
        self._connection_index = {}
        self.clusters = []

    def node_ids(self) -> List[str]:
        return list(self.graph.nodes)

    def list_nodes(self) -> List[MindMapNode]:
        return [MindMapNode(**data) for _, data in self.graph.nodes(data=True)]

    def node_table(self) -> Dict[str, MindMapNode]:
        """Detached copy of the node table keyed by id."""
        return {node_id: MindMapNode(**data) for node_id, data in self.graph.nodes(data=True)}

    def list_connections(self) -> List[MindMapConnection]:
        """Connections in insertion order."""
        connections = []
        for source, target, key in self._connection_index.values():
            data = self.graph.get_edge_data(source, target, key)
            if data:
                connections.append(MindMapConnection(**data))
        return connections

    def connections_for(self, node_id: str) -> List[MindMapConnection]:
        if node_id not in self.graph:
            return []
        return [
            MindMapConnection(**data)
            for _, _, data in self.graph.edges(node_id, data=True)
        ]

    def neighbor_ids(self, node_id: str) -> List[str]:
        if node_id not in self.graph:
            return []
        return [other for other in self.graph.neighbors(node_id) if other != node_id]

    def neighbors(self, node_id: str) -> List[MindMapNode]:
        """Nodes directly connected to `node_id` through either endpoint."""
        return [
            MindMapNode(**self.graph.nodes[other])
            for other in self.neighbor_ids(node_id)
        ]

    def degree(self, node_id: str) -> int:
        return len(self.neighbor_ids(node_id))

    @property
    def total_nodes(self) -> int:
        return self.graph.number_of_nodes()

    @property
    def total_connections(self) -> int:
        return len(self._connection_index)

    def to_stored_layout(self, fingerprint: str) -> StoredLayout:
        """Serialize positions and connections into a cache record."""
        return StoredLayout(
            fingerprint=fingerprint,
            nodes=[
                StoredNode(id=node_id, x=data["x"], y=data["y"])
                for node_id, data in self.graph.nodes(data=True)
            ],
            connections=[
                StoredConnection(
                    source_id=conn.source_id,
                    target_id=conn.target_id,
                    type=conn.type,
                    strength=conn.strength,
                    confidence=conn.confidence,
                )
                for conn in self.list_connections()
            ],
        )

    @classmethod
    def from_stored_layout(
        cls,
        layout: StoredLayout,
        node_factory=None,
        items: Optional[Iterable[SourceItem]] = None,
    ) -> "MindMapGraph":
        """Rebuild a graph from a cache record.

        `node_factory(item, x, y)` restores importance/radius/presentation when
        the source item is known; unknown ids get default node attributes.
        """
        graph = cls()
        items_by_id = {item.id: item for item in items or []}
        for stored in layout.nodes:
            item = items_by_id.get(stored.id)
            if item is not None and node_factory is not None:
                node = node_factory(item, stored.x, stored.y)
            else:
                node = MindMapNode(id=stored.id, x=stored.x, y=stored.y, title=stored.id)
            graph.add_node(node)
        for stored in layout.connections:
            graph.add_connection(
                MindMapConnection(
                    source_id=stored.source_id,
                    target_id=stored.target_id,
                    type=stored.type,
                    strength=stored.strength,
                    confidence=stored.confidence,
                )
            )
        return graph
