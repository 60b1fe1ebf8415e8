"""Tests for the item-collection fingerprint."""

from datetime import datetime

from mindmap.models.mindmap import SourceItem
from mindmap.services.fingerprint import compute_fingerprint, item_component


def _items():
    return [
        SourceItem(
            id=f"item_{i}",
            title=f"Item {i}",
            text="receipt total $12",
            tags=["food", "lunch"],
            timestamp=datetime(2024, 5, 1, 12, i),
        )
        for i in range(3)
    ]


def test_fingerprint_is_deterministic():
    assert compute_fingerprint(_items()) == compute_fingerprint(_items())
    assert len(compute_fingerprint(_items())) == 64


def test_each_tracked_field_changes_fingerprint():
    baseline = compute_fingerprint(_items())
    for update in (
        {"title": "changed"},
        {"text": "changed"},
        {"tags": ["other"]},
        {"annotation": "note"},
        {"timestamp": datetime(2025, 1, 1)},
    ):
        items = _items()
        items[1] = items[1].model_copy(update=update)
        assert compute_fingerprint(items) != baseline, update


def test_tag_order_is_ignored():
    items = _items()
    items[0] = items[0].model_copy(update={"tags": ["lunch", "food"]})
    assert compute_fingerprint(items) == compute_fingerprint(_items())


def test_collection_size_and_order_matter():
    assert compute_fingerprint(_items()[:2]) != compute_fingerprint(_items())
    assert compute_fingerprint(list(reversed(_items()))) != compute_fingerprint(_items())


def test_item_component_starts_with_id():
    assert item_component(_items()[0]).startswith("item_0:")
