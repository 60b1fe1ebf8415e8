"""
Deterministic digest over a source-item collection.
"""
import hashlib
from typing import Iterable

from mindmap.models.mindmap import SourceItem


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def item_component(item: SourceItem) -> str:
    """Per-item fingerprint component; any tracked field change alters it."""
    return ":".join([
        item.id,
        item.timestamp.isoformat(),
        _sha256(item.title or "")[:16],
        _sha256(item.text or "")[:16],
        _sha256(",".join(sorted(item.tags)))[:16],
        _sha256(item.annotation or "")[:16],
    ])


def compute_fingerprint(items: Iterable[SourceItem]) -> str:
    """SHA-256 over the item components in order plus the collection size.

    Order is significant because the node cap keeps a prefix of the collection.
    """
    components = [item_component(item) for item in items]
    components.append(f"items:{len(components)}")
    return _sha256("|".join(components))
