"""
Service construction.

Every collaborator is built here and handed to the service explicitly.
"""
import random
from typing import Optional

from mindmap.config import Settings
from mindmap.models.layout import LayoutConfig
from mindmap.services.change_tracker import ChangeTracker
from mindmap.services.event_bus import EventBus
from mindmap.services.layout_cache import LayoutCache
from mindmap.services.layout_engine import ForceDirectedLayoutEngine
from mindmap.services.mindmap_service import MindMapService
from mindmap.services.relationship_discovery import RelationshipDiscovery, TagTimeDiscovery


def build_layout_cache(settings: Settings) -> LayoutCache:
    return LayoutCache(
        cache_dir=settings.cache_dir or None,
        max_memory_entries=settings.cache_max_entries,
        ttl_seconds=settings.cache_ttl_seconds,
    )


def build_mindmap_service(
    settings: Settings,
    discovery: Optional[RelationshipDiscovery] = None,
    event_bus: Optional[EventBus] = None,
    seed: Optional[int] = None,
) -> MindMapService:
    return MindMapService(
        discovery=discovery or TagTimeDiscovery(),
        cache=build_layout_cache(settings),
        event_bus=event_bus or EventBus(),
        layout_engine=ForceDirectedLayoutEngine(
            LayoutConfig(max_iterations=settings.layout_max_iterations)
        ),
        change_tracker=ChangeTracker(),
        settings=settings,
        rng=random.Random(seed),
    )
