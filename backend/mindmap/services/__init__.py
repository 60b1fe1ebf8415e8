"""
Mind map services.
"""
from .mindmap_graph import MindMapGraph
from .layout_engine import ForceDirectedLayoutEngine
from .provisional_layout import ring_layout
from .clustering import build_clusters
from .fingerprint import compute_fingerprint
from .layout_cache import CacheReadError, LayoutCache, LayoutCacheMetrics
from .change_tracker import ChangeTracker
from .event_bus import EventBus
from .relationship_discovery import RelationshipDiscovery, TagTimeDiscovery
from .mindmap_service import (
    GenerationCancelled,
    GenerationOutcome,
    GenerationState,
    MindMapService,
    PerformanceMetrics,
)

__all__ = [
    "MindMapGraph",
    "ForceDirectedLayoutEngine",
    "ring_layout",
    "build_clusters",
    "compute_fingerprint",
    "CacheReadError",
    "LayoutCache",
    "LayoutCacheMetrics",
    "ChangeTracker",
    "EventBus",
    "RelationshipDiscovery",
    "TagTimeDiscovery",
    "GenerationCancelled",
    "GenerationOutcome",
    "GenerationState",
    "MindMapService",
    "PerformanceMetrics",
]
