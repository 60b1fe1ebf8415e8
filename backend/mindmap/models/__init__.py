"""
Data models.
"""
from .mindmap import (
    MindMapCluster,
    MindMapConnection,
    MindMapNode,
    NodeColor,
    Relationship,
    RelationshipType,
    SourceItem,
    StoredConnection,
    StoredLayout,
    StoredNode,
)
from .layout import Bounds, LayoutConfig, LayoutResult
from .change import ChangeImpact, ChangeType, DataChange, ProcessingPriority
from .event import MindMapEvent, MindMapEventType

__all__ = [
    "MindMapCluster",
    "MindMapConnection",
    "MindMapNode",
    "NodeColor",
    "Relationship",
    "RelationshipType",
    "SourceItem",
    "StoredConnection",
    "StoredLayout",
    "StoredNode",
    "Bounds",
    "LayoutConfig",
    "LayoutResult",
    "ChangeImpact",
    "ChangeType",
    "DataChange",
    "ProcessingPriority",
    "MindMapEvent",
    "MindMapEventType",
]
