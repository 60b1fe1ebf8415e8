"""
Mind map event models.
"""
from datetime import datetime
from enum import Enum
from typing import Dict

from pydantic import BaseModel, Field


class MindMapEventType(str, Enum):
    """Notifications published by the orchestrator."""

    PROVISIONAL_LAYOUT = "provisional_layout"
    GRAPH_UPDATED = "graph_updated"
    PROGRESS = "progress"
    GENERATION_COMPLETE = "generation_complete"
    GENERATION_CANCELLED = "generation_cancelled"


class MindMapEvent(BaseModel):
    """Event payload."""

    type: MindMapEventType
    timestamp: datetime = Field(default_factory=datetime.now)
    progress: float = 0.0
    data: Dict = Field(default_factory=dict)
