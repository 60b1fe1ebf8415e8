"""
Change tracking models.
"""
from datetime import datetime
from enum import Enum
from typing import List, Set

from pydantic import BaseModel, Field


class ChangeType(str, Enum):
    """Kinds of source-collection change."""

    NEW_ITEM = "new_item"
    DELETED_ITEM = "deleted_item"
    ANNOTATION_EDIT = "annotation_edit"
    BULK_IMPORT = "bulk_import"


class ProcessingPriority(str, Enum):
    """How urgently a change should be processed."""

    USER_INTERACTION = "user"
    NEW_IMPORT = "import"
    OPTIMIZATION = "optimization"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    ProcessingPriority.USER_INTERACTION: 0,
    ProcessingPriority.NEW_IMPORT: 1,
    ProcessingPriority.OPTIMIZATION: 2,
}


class DataChange(BaseModel):
    """A change event on the source-item collection."""
    type: ChangeType
    item_ids: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)


class ChangeImpact(BaseModel):
    """Classification result for a change."""
    change: DataChange
    affected_node_ids: Set[str] = Field(default_factory=set)
    priority: ProcessingPriority = ProcessingPriority.OPTIMIZATION
    full_regeneration: bool = False
