"""
Helper functions.
"""
from .geometry import Vector, centroid, is_finite
from .graph_traversal import connected_component, connected_components, expand_nodes

__all__ = [
    "Vector",
    "centroid",
    "is_finite",
    "connected_component",
    "connected_components",
    "expand_nodes",
]
