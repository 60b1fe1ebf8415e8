"""
Relationship discovery boundary.

Discovery itself is an external collaborator; `TagTimeDiscovery` is a small
heuristic used by the command line tool and tests.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Protocol, Sequence

from mindmap.models.mindmap import Relationship, RelationshipType, SourceItem

logger = logging.getLogger(__name__)


class RelationshipDiscovery(Protocol):
    async def discover(self, items: Sequence[SourceItem]) -> List[Relationship]:
        ...


class TagTimeDiscovery:
    """Shared tags -> thematic; captured close together -> temporal."""

    def __init__(
        self,
        min_tag_overlap: float = 0.2,
        temporal_window: timedelta = timedelta(hours=1),
    ) -> None:
        self.min_tag_overlap = min_tag_overlap
        self.temporal_window = temporal_window

    async def discover(self, items: Sequence[SourceItem]) -> List[Relationship]:
        relationships: List[Relationship] = []
        for i, source in enumerate(items):
            source_tags = {tag.lower() for tag in source.tags}
            for target in items[i + 1:]:
                target_tags = {tag.lower() for tag in target.tags}
                union = source_tags | target_tags
                if union:
                    overlap = len(source_tags & target_tags) / len(union)
                    if overlap >= self.min_tag_overlap:
                        relationships.append(
                            Relationship(
                                source_id=source.id,
                                target_id=target.id,
                                type=RelationshipType.THEMATIC,
                                strength=round(overlap, 4),
                                confidence=0.8,
                            )
                        )
                        continue
                gap = abs(source.timestamp - target.timestamp)
                if gap <= self.temporal_window:
                    closeness = 1.0 - gap / self.temporal_window
                    relationships.append(
                        Relationship(
                            source_id=source.id,
                            target_id=target.id,
                            type=RelationshipType.TEMPORAL,
                            strength=round(max(0.1, closeness), 4),
                            confidence=0.6,
                        )
                    )
        logger.debug("discovered %d relationships for %d items", len(relationships), len(items))
        return relationships
