"""
Cluster derivation from connected components.
"""
import logging
from typing import List

from mindmap.models.mindmap import MindMapCluster
from mindmap.services.mindmap_graph import MindMapGraph
from mindmap.utils.geometry import Vector, centroid
from mindmap.utils.graph_traversal import connected_components

logger = logging.getLogger(__name__)

CLUSTER_MARGIN = 30.0
MIN_CLUSTER_SIZE = 2


def build_clusters(graph: MindMapGraph, margin: float = CLUSTER_MARGIN) -> List[MindMapCluster]:
    """One cluster per connected component with at least two nodes."""
    total = graph.total_nodes
    if total == 0:
        return []
    components = connected_components(
        graph.node_ids(),
        graph.neighbor_ids,
        min_size=MIN_CLUSTER_SIZE,
    )
    clusters: List[MindMapCluster] = []
    for index, member_ids in enumerate(components):
        positions = []
        for node_id in member_ids:
            node = graph.get_node(node_id)
            if node:
                positions.append(Vector(node.x, node.y))
        center = centroid(positions)
        max_distance = max((center.distance_to(p) for p in positions), default=0.0)
        clusters.append(
            MindMapCluster(
                id=f"cluster_{index + 1}",
                title=f"Cluster {index + 1}",
                node_ids=member_ids,
                center_x=center.x,
                center_y=center.y,
                radius=max_distance + margin,
                importance=len(member_ids) / total,
            )
        )
    logger.info("[MindMap] created %d clusters", len(clusters))
    return clusters
