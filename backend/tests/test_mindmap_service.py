"""Tests for MindMapService generation, caching and interaction."""

import asyncio
import math
import random
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from mindmap.config import Settings
from mindmap.models.change import ChangeType, DataChange
from mindmap.models.event import MindMapEventType
from mindmap.models.mindmap import (
    NodeColor,
    Relationship,
    RelationshipType,
    SourceItem,
    StoredConnection,
    StoredLayout,
    StoredNode,
)
from mindmap.services.fingerprint import compute_fingerprint
from mindmap.services.layout_cache import LayoutCache
from mindmap.services.mindmap_service import (
    GenerationState,
    MindMapService,
    build_node,
    calculate_importance,
    determine_color,
)

BASE = datetime(2024, 5, 1, 9, 0)


def _items(count: int = 20, prefix: str = "item"):
    return [
        SourceItem(
            id=f"{prefix}_{i}",
            title=f"Item {i}",
            text=f"note number {i}",
            tags=[f"tag{i % 4}"],
            timestamp=BASE + timedelta(days=i),
        )
        for i in range(count)
    ]


def _chain(count: int = 15, prefix: str = "item"):
    return [
        Relationship(
            source_id=f"{prefix}_{i}",
            target_id=f"{prefix}_{i + 1}",
            type=RelationshipType.THEMATIC,
            strength=0.6,
            confidence=0.9,
        )
        for i in range(count)
    ]


def _mock_discovery(relationships):
    discovery = MagicMock()
    discovery.discover = AsyncMock(return_value=relationships)
    return discovery


class BlockingDiscovery:
    """Blocks the first call until released; later calls return at once."""

    def __init__(self, relationships):
        self.relationships = relationships
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def discover(self, items):
        self.calls += 1
        if self.calls == 1:
            self.started.set()
            await self.release.wait()
        return [
            rel for rel in self.relationships
            if rel.source_id in {item.id for item in items}
        ]


def _service(discovery, **settings_overrides) -> MindMapService:
    return MindMapService(
        discovery=discovery,
        cache=LayoutCache(),
        settings=Settings(**settings_overrides),
        rng=random.Random(7),
    )


def _record_events(service: MindMapService):
    events = []
    for event_type in MindMapEventType:
        service.event_bus.subscribe(event_type, events.append)
    return events


class TestNodeFactory:
    def test_importance_and_radius(self):
        rich = SourceItem(id="a", text="x" * 500, tags=["t"] * 5)
        bare = SourceItem(id="b")
        assert calculate_importance(rich) == 1.0
        assert calculate_importance(bare) == 0.5
        assert build_node(rich, 0.0, 0.0).radius == 40.0
        assert build_node(bare, 0.0, 0.0).radius == 32.5

    def test_color_keywords(self):
        assert determine_color(SourceItem(id="a", text="Receipt total $4")) == NodeColor.GREEN
        assert determine_color(SourceItem(id="b", text="chat with Sam")) == NodeColor.BLUE
        assert determine_color(SourceItem(id="c", text="a photo")) == NodeColor.ORANGE
        assert determine_color(SourceItem(id="d", text="scanned PDF")) == NodeColor.PURPLE
        assert determine_color(SourceItem(id="e")) == NodeColor.BLUE

    def test_presentation_fields(self):
        node = build_node(SourceItem(id="a", timestamp=BASE), 1.0, 2.0)
        assert node.title == "a"
        assert node.subtitle == "2024-05-01 09:00"


class TestGeneration:
    @pytest.mark.asyncio
    async def test_full_generation_builds_graph_and_caches_it(self):
        discovery = _mock_discovery(_chain())
        service = _service(discovery)
        events = _record_events(service)

        outcome = await service.generate(_items())

        assert outcome.state == GenerationState.CONVERGED
        assert outcome.from_cache is False
        assert service.graph.total_nodes == 20
        assert service.graph.total_connections == 15
        assert service.progress == 1.0
        assert service.state == GenerationState.IDLE
        assert service.last_outcome == GenerationState.CONVERGED
        assert service.is_provisional is False
        for node in service.graph.list_nodes():
            assert math.isfinite(node.x) and math.isfinite(node.y)
            assert -400.0 <= node.x <= 400.0

        cached = service.cache.get(outcome.fingerprint)
        assert cached == service.graph.to_stored_layout(outcome.fingerprint)

        assert events[0].type == MindMapEventType.PROVISIONAL_LAYOUT
        assert events[-1].type == MindMapEventType.GENERATION_COMPLETE
        progress = [e.progress for e in events if e.type == MindMapEventType.PROGRESS]
        assert progress == [0.3, 0.5, 0.7, 0.9, 1.0]

    @pytest.mark.asyncio
    async def test_clusters_and_metrics(self):
        service = _service(_mock_discovery(_chain(3)))
        await service.generate(_items(6))

        assert len(service.graph.clusters) == 1
        assert sorted(service.graph.clusters[0].node_ids) == ["item_0", "item_1", "item_2", "item_3"]
        assert service.metrics.nodes_count == 6
        assert service.metrics.connections_count == 3
        assert service.metrics.clusters_count == 1
        assert 0 < service.metrics.iterations <= 12

    @pytest.mark.asyncio
    async def test_unchanged_input_uses_cache(self):
        discovery = _mock_discovery(_chain())
        service = _service(discovery)
        first = await service.generate(_items())
        layout = service.graph.to_stored_layout(first.fingerprint)
        radius = service.graph.get_node("item_3").radius

        events = _record_events(service)
        second = await service.generate(_items())

        assert second.from_cache is True
        assert second.fingerprint == first.fingerprint
        assert discovery.discover.await_count == 1
        assert service.graph.to_stored_layout(second.fingerprint) == layout
        assert service.graph.get_node("item_3").radius == radius
        assert service.graph.clusters
        assert MindMapEventType.GENERATION_COMPLETE not in [e.type for e in events]
        assert MindMapEventType.GRAPH_UPDATED in [e.type for e in events]

    @pytest.mark.asyncio
    async def test_edited_item_forces_regeneration(self):
        discovery = _mock_discovery(_chain())
        service = _service(discovery)
        first = await service.generate(_items())

        items = _items()
        items[4] = items[4].model_copy(update={"title": "Edited"})
        second = await service.generate(items)

        assert second.fingerprint != first.fingerprint
        assert second.from_cache is False
        assert discovery.discover.await_count == 2
        assert service.graph.get_node("item_4").title == "Edited"

    @pytest.mark.asyncio
    async def test_refresh_if_needed_skips_unchanged_data(self):
        discovery = _mock_discovery(_chain())
        service = _service(discovery)
        await service.generate(_items())

        assert await service.refresh_if_needed(_items()) is None
        outcome = await service.refresh_if_needed(_items(21))
        assert outcome is not None
        assert discovery.discover.await_count == 2

    @pytest.mark.asyncio
    async def test_items_and_connections_are_capped(self):
        discovery = _mock_discovery(_chain(20))
        service = _service(discovery, max_nodes=10, max_connections=5)

        await service.generate(_items(25))

        assert service.graph.total_nodes == 10
        assert service.graph.node_ids() == [f"item_{i}" for i in range(10)]
        assert service.graph.total_connections == 5

    @pytest.mark.asyncio
    async def test_invalid_relationships_are_dropped(self):
        relationships = _chain(2) + [
            Relationship(source_id="item_0", target_id="ghost", type=RelationshipType.VISUAL, strength=0.5),
            Relationship(source_id="item_1", target_id="item_1", type=RelationshipType.VISUAL, strength=0.5),
        ]
        service = _service(_mock_discovery(relationships))

        await service.generate(_items(4))

        assert service.graph.total_connections == 2
        for connection in service.graph.list_connections():
            assert service.graph.has_node(connection.source_id)
            assert service.graph.has_node(connection.target_id)

    @pytest.mark.asyncio
    async def test_discovery_failure_yields_unconnected_graph(self):
        discovery = MagicMock()
        discovery.discover = AsyncMock(side_effect=RuntimeError("service down"))
        service = _service(discovery)

        outcome = await service.generate(_items(5))

        assert outcome.state == GenerationState.CONVERGED
        assert service.graph.total_nodes == 5
        assert service.graph.total_connections == 0
        assert service.graph.clusters == []

    @pytest.mark.asyncio
    async def test_empty_input(self):
        service = _service(_mock_discovery([]))
        outcome = await service.generate([])
        assert outcome.state == GenerationState.CONVERGED
        assert service.graph.total_nodes == 0
        assert service.graph.clusters == []

    @pytest.mark.asyncio
    async def test_cached_record_with_invalid_connection_regenerates(self):
        discovery = _mock_discovery(_chain(2))
        items = _items(3)
        bad = StoredLayout.model_construct(
            fingerprint="fp",
            nodes=[StoredNode(id=item.id, x=0.0, y=float(i) * 100) for i, item in enumerate(items)],
            connections=[
                StoredConnection.model_construct(
                    source_id="item_0",
                    target_id="item_1",
                    type=RelationshipType.THEMATIC,
                    strength=1.5,
                    confidence=0.5,
                )
            ],
        )
        cache = MagicMock()
        cache.get.return_value = bad
        service = MindMapService(discovery=discovery, cache=cache, rng=random.Random(1))

        outcome = await asyncio.wait_for(service.generate(items), timeout=10)

        assert outcome.state == GenerationState.CONVERGED
        assert outcome.from_cache is False
        assert service.state == GenerationState.IDLE
        assert discovery.discover.await_count == 1
        assert service.graph.total_connections == 2
        cache.set.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalid_record_on_disk_regenerates(self, tmp_path):
        discovery = _mock_discovery(_chain(2))
        items = _items(3)
        fingerprint = compute_fingerprint(items)
        payload = (
            '{"fingerprint": "' + fingerprint + '", "nodes": [{"id": "item_0", "x": 0.0, "y": 0.0}],'
            ' "connections": [{"sourceId": "item_0", "targetId": "item_1", "type": "thematic",'
            ' "strength": 1.5, "confidence": 0.5}]}'
        )
        (tmp_path / f"{fingerprint}.json").write_text(payload, encoding="utf-8")
        service = MindMapService(
            discovery=discovery,
            cache=LayoutCache(cache_dir=tmp_path),
            rng=random.Random(1),
        )

        outcome = await asyncio.wait_for(service.generate(items), timeout=10)

        assert outcome.state == GenerationState.CONVERGED
        assert outcome.from_cache is False
        assert service.state == GenerationState.IDLE
        assert discovery.discover.await_count == 1
        assert service.cache.get(fingerprint) == service.graph.to_stored_layout(fingerprint)

    @pytest.mark.asyncio
    async def test_unreadable_cache_falls_back_to_generation(self):
        discovery = _mock_discovery(_chain(3))
        cache = MagicMock()
        cache.get.side_effect = OSError("disk gone")
        service = MindMapService(discovery=discovery, cache=cache, rng=random.Random(1))

        outcome = await service.generate(_items(4))

        assert outcome.state == GenerationState.CONVERGED
        assert discovery.discover.await_count == 1
        cache.set.assert_called_once()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_leaves_provisional_graph_and_skips_cache(self):
        discovery = BlockingDiscovery(_chain())
        service = _service(discovery)
        events = _record_events(service)

        task = service.start_generation(_items())
        await discovery.started.wait()
        assert service.is_generating
        service.cancel()
        discovery.release.set()
        outcome = await task

        assert outcome.state == GenerationState.CANCELLED
        assert service.state == GenerationState.IDLE
        assert service.last_outcome == GenerationState.CANCELLED
        assert service.graph.total_nodes == 20
        assert service.graph.total_connections == 0
        assert service.cache.metrics().memory_entries == 0
        assert events[-1].type == MindMapEventType.GENERATION_CANCELLED

    @pytest.mark.asyncio
    async def test_new_generation_supersedes_running_one(self):
        relationships = _chain(3) + _chain(3, prefix="other")
        discovery = BlockingDiscovery(relationships)
        service = _service(discovery)

        first_task = service.start_generation(_items(5))
        await discovery.started.wait()
        second = await service.generate(_items(5, prefix="other"))
        discovery.release.set()
        first = await first_task

        assert second.state == GenerationState.CONVERGED
        assert first.state == GenerationState.CANCELLED
        assert service.graph.node_ids() == [f"other_{i}" for i in range(5)]
        assert service.graph.total_connections == 3
        assert service.last_outcome == GenerationState.CONVERGED
        assert service.cache.metrics().memory_entries == 1


class TestInteraction:
    @pytest.mark.asyncio
    async def test_drag_during_generation_is_preserved(self):
        discovery = BlockingDiscovery(_chain())
        service = _service(discovery)

        task = service.start_generation(_items())
        await discovery.started.wait()
        assert await service.start_drag("item_0") is True
        assert await service.update_drag_position("item_0", 123.0, -45.0) is True
        discovery.release.set()
        await task

        node = service.graph.get_node("item_0")
        assert (node.x, node.y) == (123.0, -45.0)
        assert node.is_dragging is True
        assert (node.vx, node.vy) == (0.0, 0.0)

        assert await service.end_drag("item_0") is True
        assert service.graph.get_node("item_0").is_dragging is False

    @pytest.mark.asyncio
    async def test_concurrent_drag_updates_stay_consistent(self):
        discovery = BlockingDiscovery(_chain())
        service = _service(discovery)

        async def drag():
            await discovery.started.wait()
            await service.start_drag("item_1")
            discovery.release.set()
            for step in range(20):
                await service.update_drag_position("item_1", float(step), 10.0)
                await asyncio.sleep(0)

        outcome, _ = await asyncio.wait_for(
            asyncio.gather(service.generate(_items()), drag()),
            timeout=10,
        )

        assert outcome.state == GenerationState.CONVERGED
        node = service.graph.get_node("item_1")
        assert (node.x, node.y) == (19.0, 10.0)
        assert all(math.isfinite(n.x) and math.isfinite(n.y) for n in service.graph.list_nodes())

    @pytest.mark.asyncio
    async def test_invalid_drag_input_is_ignored(self):
        service = _service(_mock_discovery([]))
        await service.generate(_items(3))

        assert await service.start_drag("ghost") is False
        assert await service.update_drag_position("item_0", float("nan"), 0.0) is False
        assert await service.end_drag("ghost") is False
        assert math.isfinite(service.graph.get_node("item_0").x)

    @pytest.mark.asyncio
    async def test_selection_is_exclusive_and_highlights_neighbors(self):
        service = _service(_mock_discovery(_chain(5)))
        await service.generate(_items(8))

        assert await service.select("item_2") is True
        assert service.graph.get_node("item_2").is_selected is True
        assert service.graph.get_node("item_1").scale == 1.2
        assert service.graph.get_node("item_3").scale == 1.2
        assert service.graph.get_node("item_7").scale == 0.8
        assert service.graph.get_node("item_7").opacity == 0.6

        assert await service.focus_on_node("item_4") is True
        selected = [n.id for n in service.graph.list_nodes() if n.is_selected]
        assert selected == ["item_4"]
        assert service.selected_node_id == "item_4"

        assert await service.select("ghost") is False
        assert service.selected_node_id == "item_4"

        assert await service.select(None) is True
        assert service.selected_node_id is None
        assert all(n.scale == 1.0 and n.opacity == 1.0 for n in service.graph.list_nodes())
        assert not any(n.is_selected for n in service.graph.list_nodes())

    @pytest.mark.asyncio
    async def test_hover(self):
        service = _service(_mock_discovery([]))
        service.hover("item_1")
        assert service.hovered_node_id == "item_1"
        service.hover(None)
        assert service.hovered_node_id is None


class TestChangeHandling:
    @pytest.mark.asyncio
    async def test_deleted_item_is_removed_incrementally(self):
        discovery = _mock_discovery(_chain())
        service = _service(discovery)
        outcome = await service.generate(_items())
        await service.select("item_1")

        impact = await service.handle_change(DataChange(type=ChangeType.DELETED_ITEM, item_ids=["item_1"]))

        assert "item_2" in impact.affected_node_ids
        assert impact.full_regeneration is False
        assert not service.graph.has_node("item_1")
        assert service.graph.total_connections == 13
        assert service.selected_node_id is None
        assert all("item_1" not in c.node_ids for c in service.graph.clusters)
        assert service.cache.get(outcome.fingerprint) is None
        assert discovery.discover.await_count == 1

    @pytest.mark.asyncio
    async def test_annotation_edit_only_invalidates_cache(self):
        discovery = _mock_discovery(_chain())
        service = _service(discovery)
        outcome = await service.generate(_items())

        impact = await service.handle_change(DataChange(type=ChangeType.ANNOTATION_EDIT, item_ids=["item_5"]))

        assert impact.affected_node_ids == {"item_4", "item_5", "item_6"}
        assert service.cache.get(outcome.fingerprint) is None
        assert service.graph.total_nodes == 20
        assert discovery.discover.await_count == 1

    @pytest.mark.asyncio
    async def test_new_item_triggers_regeneration(self):
        discovery = _mock_discovery(_chain())
        service = _service(discovery)
        await service.generate(_items(19))

        items = _items(20)
        await service.handle_change(DataChange(type=ChangeType.NEW_ITEM, item_ids=["item_19"]), items)
        outcome = await service.wait()

        assert outcome.state == GenerationState.CONVERGED
        assert service.graph.has_node("item_19")
        assert discovery.discover.await_count == 2

    @pytest.mark.asyncio
    async def test_remove_unknown_item(self):
        service = _service(_mock_discovery([]))
        assert await service.remove_item("ghost") is False
