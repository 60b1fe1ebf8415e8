"""
Mind map data models.
"""
import math
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RelationshipType(str, Enum):
    """Categories of discovered relationships."""

    TEMPORAL = "temporal"
    SPATIAL = "spatial"
    THEMATIC = "thematic"
    ENTITY_BASED = "entity_based"
    VISUAL = "visual"
    SEMANTIC = "semantic"


class NodeColor(str, Enum):
    """Colour category derived from item content."""

    GREEN = "green"
    BLUE = "blue"
    ORANGE = "orange"
    PURPLE = "purple"


class SourceItem(BaseModel):
    """A captured item that becomes one node."""
    id: str
    title: Optional[str] = None
    text: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)
    annotation: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Relationship(BaseModel):
    """Relationship returned by the discovery collaborator."""
    source_id: str
    target_id: str
    type: RelationshipType
    strength: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MindMapNode(BaseModel):
    """Graph node with physics state."""
    id: str
    x: float = 0.0
    y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    radius: float = Field(default=30.0, gt=0.0)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    is_dragging: bool = False
    is_selected: bool = False

    # Presentation
    title: str = ""
    subtitle: str = ""
    color: NodeColor = NodeColor.BLUE
    scale: float = 1.0
    opacity: float = 1.0

    model_config = ConfigDict(from_attributes=True)

    @field_validator("x", "y", "vx", "vy")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("node coordinates must be finite")
        return value


class MindMapConnection(BaseModel):
    """Connection between two existing nodes."""
    source_id: str
    target_id: str
    type: RelationshipType
    strength: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    model_config = ConfigDict(from_attributes=True)

    @property
    def id(self) -> str:
        return f"{self.source_id}|{self.target_id}|{self.type.value}"

    def other_end(self, node_id: str) -> Optional[str]:
        if node_id == self.source_id:
            return self.target_id
        if node_id == self.target_id:
            return self.source_id
        return None


class MindMapCluster(BaseModel):
    """Connected component of two or more nodes."""
    id: str
    title: str
    node_ids: List[str] = Field(default_factory=list)
    center_x: float = 0.0
    center_y: float = 0.0
    radius: float = 0.0
    importance: float = 0.0


class StoredNode(BaseModel):
    """Persisted node position."""
    id: str
    x: float
    y: float

    @field_validator("x", "y")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("stored coordinates must be finite")
        return value


class StoredConnection(BaseModel):
    """Persisted connection."""
    source_id: str
    target_id: str
    type: RelationshipType
    strength: float = Field(ge=0.0, le=1.0)
    confidence: float = Field(ge=0.0, le=1.0)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StoredLayout(BaseModel):
    """Cache record: `{fingerprint, nodes: [{id, x, y}], connections: [...]}`."""
    fingerprint: str
    nodes: List[StoredNode] = Field(default_factory=list)
    connections: List[StoredConnection] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def node_ids(self) -> set:
        return {node.id for node in self.nodes}

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, payload: str) -> "StoredLayout":
        return cls.model_validate_json(payload)
