"""
Mind map generation pipeline and interactive node manipulation.

Pipeline: fingerprint -> cache check -> provisional ring layout ->
relationship discovery -> nodes -> connections -> force-directed layout ->
clusters -> cache write.

All writes to the node table go through one asyncio lock owned by the
service. Physics results are committed once per iteration; nodes whose live
copy is being dragged are never written by the physics commit.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from mindmap.config import Settings
from mindmap.models.change import ChangeImpact, ChangeType, DataChange
from mindmap.models.event import MindMapEvent, MindMapEventType
from mindmap.models.layout import Bounds, LayoutConfig, LayoutResult
from mindmap.models.mindmap import (
    MindMapConnection,
    MindMapNode,
    NodeColor,
    Relationship,
    SourceItem,
    StoredLayout,
)
from mindmap.services.change_tracker import ChangeTracker
from mindmap.services.clustering import build_clusters
from mindmap.services.event_bus import EventBus
from mindmap.services.fingerprint import compute_fingerprint
from mindmap.services.layout_cache import LayoutCache
from mindmap.services.layout_engine import ForceDirectedLayoutEngine, NodeTable
from mindmap.services.mindmap_graph import MindMapGraph
from mindmap.services.provisional_layout import ring_count, ring_layout
from mindmap.services.relationship_discovery import RelationshipDiscovery

logger = logging.getLogger(__name__)

# Stage boundaries on the 0..1 progress scale
PROGRESS_DISCOVERY = 0.3
PROGRESS_NODES = 0.5
PROGRESS_CONNECTIONS = 0.7
PROGRESS_LAYOUT = 0.9
PROGRESS_DONE = 1.0

HIGHLIGHT_SCALE = 1.2
RECEDE_SCALE = 0.8
RECEDE_OPACITY = 0.6


class GenerationCancelled(RuntimeError):
    """Raised inside a pipeline run that has been cancelled."""

    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        super().__init__(f"mind map generation {run_id} cancelled")


class GenerationState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    CONVERGED = "converged"
    CANCELLED = "cancelled"


class GenerationOutcome(BaseModel):
    """Result of one pipeline run."""
    state: GenerationState
    fingerprint: str = ""
    from_cache: bool = False
    layout: Optional[LayoutResult] = None


class PerformanceMetrics(BaseModel):
    nodes_count: int = 0
    connections_count: int = 0
    clusters_count: int = 0
    layout_time: float = 0.0
    relationship_discovery_time: float = 0.0
    iterations: int = 0
    converged: bool = False
    last_updated: datetime = Field(default_factory=datetime.now)


class _GenerationRun:
    """Cancellation token for one pipeline run; safe to cancel from anywhere."""

    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def check(self) -> None:
        if self.cancelled:
            raise GenerationCancelled(self.run_id)


def calculate_importance(item: SourceItem) -> float:
    """0.5 base, up to +0.3 for text length and +0.2 for tags."""
    importance = 0.5
    if item.text:
        importance += min(0.3, len(item.text) / 1000.0)
    if item.tags:
        importance += min(0.2, len(item.tags) / 10.0)
    return max(0.0, min(1.0, importance))


def node_radius(importance: float) -> float:
    return 25.0 + importance * 15.0


def determine_color(item: SourceItem) -> NodeColor:
    text = (item.text or "").lower()
    if "receipt" in text or "total" in text or "$" in text:
        return NodeColor.GREEN
    if "message" in text or "chat" in text:
        return NodeColor.BLUE
    if "photo" in text or "image" in text:
        return NodeColor.ORANGE
    if "document" in text or "pdf" in text:
        return NodeColor.PURPLE
    return NodeColor.BLUE


def build_node(item: SourceItem, x: float, y: float) -> MindMapNode:
    importance = calculate_importance(item)
    return MindMapNode(
        id=item.id,
        x=x,
        y=y,
        importance=importance,
        radius=node_radius(importance),
        title=item.title or item.id,
        subtitle=item.timestamp.strftime("%Y-%m-%d %H:%M"),
        color=determine_color(item),
    )


class MindMapService:
    """Owns one mind map graph and serializes every mutation of it."""

    def __init__(
        self,
        discovery: RelationshipDiscovery,
        cache: Optional[LayoutCache] = None,
        event_bus: Optional[EventBus] = None,
        layout_engine: Optional[ForceDirectedLayoutEngine] = None,
        change_tracker: Optional[ChangeTracker] = None,
        settings: Optional[Settings] = None,
        bounds: Optional[Bounds] = None,
        rng: Optional[random.Random] = None,
        fingerprint_fn: Callable[[Sequence[SourceItem]], str] = compute_fingerprint,
    ) -> None:
        self.discovery = discovery
        self.settings = settings or Settings()
        self.cache = cache or LayoutCache(
            cache_dir=self.settings.cache_dir or None,
            max_memory_entries=self.settings.cache_max_entries,
            ttl_seconds=self.settings.cache_ttl_seconds,
        )
        self.event_bus = event_bus or EventBus()
        self.layout_engine = layout_engine or ForceDirectedLayoutEngine(
            LayoutConfig(max_iterations=self.settings.layout_max_iterations)
        )
        self.change_tracker = change_tracker or ChangeTracker()
        self.bounds = bounds or Bounds()
        self.rng = rng or random.Random()
        self.fingerprint_fn = fingerprint_fn

        self.graph = MindMapGraph()
        self.state = GenerationState.IDLE
        self.last_outcome: Optional[GenerationState] = None
        self.progress = 0.0
        self.layout_progress = 0.0
        self.is_provisional = False
        self.last_fingerprint: Optional[str] = None
        self.selected_node_id: Optional[str] = None
        self.hovered_node_id: Optional[str] = None
        self.metrics = PerformanceMetrics()

        self._lock = asyncio.Lock()
        self._run: Optional[_GenerationRun] = None
        self._task: Optional[asyncio.Task] = None
        self._run_counter = 0
        logger.info("[MindMap] service initialized")

    @property
    def is_generating(self) -> bool:
        return self.state == GenerationState.GENERATING

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def start_generation(self, items: Sequence[SourceItem]) -> asyncio.Task:
        """Cancel any in-flight run and schedule a new one."""
        self.cancel()
        self._run_counter += 1
        run = _GenerationRun(self._run_counter)
        self._run = run
        self.state = GenerationState.GENERATING
        self.progress = 0.0
        self._task = asyncio.create_task(self._generate(list(items), run))
        return self._task

    async def generate(self, items: Sequence[SourceItem]) -> GenerationOutcome:
        return await self.start_generation(items)

    def cancel(self) -> None:
        """Cooperatively cancel the current run, if any."""
        if self._run is not None and not self._run.cancelled:
            logger.info("[MindMap] cancelling generation %d", self._run.run_id)
            self._run.cancel()

    async def refresh_if_needed(self, items: Sequence[SourceItem]) -> Optional[GenerationOutcome]:
        """Regenerate only when the fingerprint differs from the last completed run."""
        fingerprint = await self._in_executor(self.fingerprint_fn, list(items))
        if (
            fingerprint == self.last_fingerprint
            and not self.is_provisional
            and not self.is_generating
        ):
            logger.debug("[MindMap] data unchanged, skipping refresh")
            return None
        return await self.generate(items)

    async def wait(self) -> Optional[GenerationOutcome]:
        if self._task is None:
            return None
        return await self._task

    async def _generate(self, items: List[SourceItem], run: _GenerationRun) -> GenerationOutcome:
        started = time.perf_counter()
        fingerprint = ""
        try:
            fingerprint = await self._in_executor(self.fingerprint_fn, items)
            run.check()

            cached = await self._load_cached(fingerprint)
            run.check()
            if cached is not None and await self._commit_cached(cached, items, run):
                self.last_fingerprint = fingerprint
                await self._set_progress(run, PROGRESS_DONE)
                logger.info(
                    "[MindMap] loaded %d nodes from cache in %.3fs",
                    len(cached.nodes),
                    time.perf_counter() - started,
                )
                return self._finish(run, GenerationOutcome(
                    state=GenerationState.CONVERGED,
                    fingerprint=fingerprint,
                    from_cache=True,
                ))

            capped = self._cap_items(items)
            await self._publish_provisional(capped, run)

            logger.info("[MindMap] step 1: discovering relationships")
            discovery_started = time.perf_counter()
            relationships = await self._discover(capped)
            discovery_time = time.perf_counter() - discovery_started
            run.check()
            await self._set_progress(run, PROGRESS_DISCOVERY)

            logger.info("[MindMap] step 2: creating nodes")
            await self._create_nodes(capped, run)
            await self._set_progress(run, PROGRESS_NODES)

            logger.info("[MindMap] step 3: creating connections")
            await self._create_connections(relationships, run)
            await self._set_progress(run, PROGRESS_CONNECTIONS)

            logger.info("[MindMap] step 4: calculating layout")
            layout_started = time.perf_counter()
            layout_result = await self._perform_layout(run)
            layout_time = time.perf_counter() - layout_started
            await self._set_progress(run, PROGRESS_LAYOUT)

            logger.info("[MindMap] step 5: creating clusters")
            await self._create_clusters(run)
            await self._set_progress(run, PROGRESS_DONE)

            await self._persist(fingerprint, run)
            self.last_fingerprint = fingerprint
            self._update_metrics(layout_result, layout_time, discovery_time)
            logger.info(
                "[MindMap] generation completed in %.2fs: %d nodes, %d connections, %d clusters",
                time.perf_counter() - started,
                self.graph.total_nodes,
                self.graph.total_connections,
                len(self.graph.clusters),
            )
            outcome = self._finish(run, GenerationOutcome(
                state=GenerationState.CONVERGED,
                fingerprint=fingerprint,
                layout=layout_result,
            ))
            await self.event_bus.publish(MindMapEvent(
                type=MindMapEventType.GENERATION_COMPLETE,
                progress=PROGRESS_DONE,
            ))
            return outcome
        except GenerationCancelled:
            logger.info("[MindMap] generation %d cancelled", run.run_id)
            outcome = self._finish(run, GenerationOutcome(
                state=GenerationState.CANCELLED,
                fingerprint=fingerprint,
            ))
            await self.event_bus.publish(MindMapEvent(
                type=MindMapEventType.GENERATION_CANCELLED,
                progress=self.progress,
            ))
            return outcome

    def _finish(self, run: _GenerationRun, outcome: GenerationOutcome) -> GenerationOutcome:
        if self._run is run:
            self.last_outcome = outcome.state
            self.state = GenerationState.IDLE
            self._run = None
        return outcome

    async def _in_executor(self, fn: Callable, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def _load_cached(self, fingerprint: str) -> Optional[StoredLayout]:
        try:
            return await self._in_executor(self.cache.get, fingerprint)
        except Exception as exc:
            logger.warning("[MindMap] cache read failed, regenerating: %s", exc)
            return None

    async def _commit_cached(
        self,
        layout: StoredLayout,
        items: Sequence[SourceItem],
        run: _GenerationRun,
    ) -> bool:
        """Install a cached layout; False when the record does not rebuild."""
        try:
            restored = MindMapGraph.from_stored_layout(layout, node_factory=build_node, items=items)
        except ValidationError as exc:
            logger.warning("[MindMap] cached layout %s is invalid, regenerating: %s", layout.fingerprint[:12], exc)
            return False
        restored.clusters = build_clusters(restored)
        async with self._lock:
            run.check()
            self.graph.load_from(restored)
            self.is_provisional = False
            self.selected_node_id = None
        await self._publish_graph_updated(source="cache")
        return True

    def _cap_items(self, items: List[SourceItem]) -> List[SourceItem]:
        max_nodes = self.settings.max_nodes
        if len(items) > max_nodes:
            logger.warning(
                "[MindMap] processing only the first %d of %d items",
                max_nodes,
                len(items),
            )
            return items[:max_nodes]
        return items

    def _placed_nodes(self, items: Sequence[SourceItem], positions: Dict[str, tuple]) -> List[MindMapNode]:
        """Build nodes, keeping position and drag state of nodes being dragged."""
        nodes = []
        for item in items:
            existing = self.graph.get_node(item.id)
            if existing is not None and existing.is_dragging:
                node = build_node(item, existing.x, existing.y)
                node.is_dragging = True
            else:
                x, y = positions[item.id]
                node = build_node(item, x, y)
            nodes.append(node)
        return nodes

    async def _publish_provisional(self, items: Sequence[SourceItem], run: _GenerationRun) -> None:
        ring = ring_layout(len(items), self.rng)
        positions = {item.id: ring[index] for index, item in enumerate(items)}
        async with self._lock:
            run.check()
            nodes = self._placed_nodes(items, positions)
            self.graph.remove_all()
            for node in nodes:
                self.graph.add_node(node)
            self.is_provisional = True
            self.selected_node_id = None
        logger.info(
            "[MindMap] provisional layout ready: %d nodes in %d rings",
            len(items),
            ring_count(len(items)),
        )
        await self.event_bus.publish(MindMapEvent(
            type=MindMapEventType.PROVISIONAL_LAYOUT,
            progress=self.progress,
            data={"nodes": len(items)},
        ))

    async def _discover(self, items: Sequence[SourceItem]) -> List[Relationship]:
        try:
            relationships = await self.discovery.discover(items)
        except Exception as exc:
            logger.warning("[MindMap] relationship discovery failed: %s", exc)
            return []
        return list(relationships or [])

    async def _create_nodes(self, items: Sequence[SourceItem], run: _GenerationRun) -> None:
        async with self._lock:
            run.check()
            positions = {}
            for node in self.graph.list_nodes():
                positions[node.id] = (node.x, node.y)
            missing = [item for item in items if item.id not in positions]
            if missing:
                ring = ring_layout(len(items), self.rng)
                for index, item in enumerate(items):
                    positions.setdefault(item.id, ring[index])
            nodes = self._placed_nodes(items, positions)
            self.graph.remove_all()
            for node in nodes:
                self.graph.add_node(node)
        logger.info("[MindMap] created %d nodes", len(items))

    async def _create_connections(
        self,
        relationships: Sequence[Relationship],
        run: _GenerationRun,
    ) -> None:
        max_connections = self.settings.max_connections
        if len(relationships) > max_connections:
            logger.warning(
                "[MindMap] using only the first %d of %d relationships",
                max_connections,
                len(relationships),
            )
            relationships = relationships[:max_connections]
        async with self._lock:
            run.check()
            self.graph.clear_connections()
            dropped = 0
            for relationship in relationships:
                if relationship.source_id == relationship.target_id:
                    dropped += 1
                    continue
                connection = MindMapConnection(
                    source_id=relationship.source_id,
                    target_id=relationship.target_id,
                    type=relationship.type,
                    strength=relationship.strength,
                    confidence=relationship.confidence,
                )
                if not self.graph.add_connection(connection):
                    dropped += 1
        if dropped:
            logger.info("[MindMap] dropped %d relationships with missing endpoints", dropped)
        logger.info("[MindMap] created %d connections", self.graph.total_connections)

    async def _perform_layout(self, run: _GenerationRun) -> LayoutResult:
        async with self._lock:
            run.check()
            table = self.graph.node_table()
            connections = self.graph.list_connections()
        self.layout_progress = 0.0

        async def commit(iteration: int, cap: int, working: NodeTable) -> None:
            async with self._lock:
                run.check()
                self._commit_iteration(working)
            self.layout_progress = iteration / cap
            self.progress = PROGRESS_CONNECTIONS + (PROGRESS_LAYOUT - PROGRESS_CONNECTIONS) * self.layout_progress

        _, result = await self.layout_engine.run(table, connections, self.bounds, on_iteration=commit)
        run.check()
        self.layout_progress = 1.0
        logger.info(
            "[MindMap] layout finished after %d iterations (converged=%s, mean velocity=%.4f)",
            result.iterations,
            result.converged,
            result.mean_velocity,
        )
        await self._publish_graph_updated(source="layout")
        return result

    def _commit_iteration(self, working: NodeTable) -> None:
        """Write physics output to the live table; mirror live drag state back."""
        for node_id, node in list(working.items()):
            live = self.graph.get_node(node_id)
            if live is None:
                continue
            if live.is_dragging:
                self.layout_engine.set_node_position(working, node_id, live.x, live.y)
                working[node_id] = working[node_id].model_copy(update={"is_dragging": True})
                continue
            if node.is_dragging:
                working[node_id] = node.model_copy(update={"is_dragging": False})
            self.graph.write_physics_state(node_id, node.x, node.y, node.vx, node.vy)

    async def _create_clusters(self, run: _GenerationRun) -> None:
        async with self._lock:
            run.check()
            self.graph.clusters = build_clusters(self.graph)
            self.is_provisional = False

    async def _persist(self, fingerprint: str, run: _GenerationRun) -> None:
        async with self._lock:
            run.check()
            layout = self.graph.to_stored_layout(fingerprint)
        run.check()
        try:
            await self._in_executor(self.cache.set, fingerprint, layout)
        except Exception as exc:
            logger.error("[MindMap] failed to persist layout %s: %s", fingerprint[:12], exc)
            return
        logger.info("[MindMap] saved layout with fingerprint %s...", fingerprint[:12])

    async def _set_progress(self, run: _GenerationRun, value: float) -> None:
        if run.cancelled:
            return
        self.progress = value
        await self.event_bus.publish(MindMapEvent(type=MindMapEventType.PROGRESS, progress=value))

    async def _publish_graph_updated(self, **data: Any) -> None:
        await self.event_bus.publish(MindMapEvent(
            type=MindMapEventType.GRAPH_UPDATED,
            progress=self.progress,
            data={
                "nodes": self.graph.total_nodes,
                "connections": self.graph.total_connections,
                **data,
            },
        ))

    def _update_metrics(self, result: LayoutResult, layout_time: float, discovery_time: float) -> None:
        self.metrics = PerformanceMetrics(
            nodes_count=self.graph.total_nodes,
            connections_count=self.graph.total_connections,
            clusters_count=len(self.graph.clusters),
            layout_time=layout_time,
            relationship_discovery_time=discovery_time,
            iterations=result.iterations,
            converged=result.converged,
        )

    # ------------------------------------------------------------------
    # Interactive manipulation
    # ------------------------------------------------------------------

    async def start_drag(self, node_id: str) -> bool:
        async with self._lock:
            node = self.graph.update_node(node_id, vx=0.0, vy=0.0, is_dragging=True)
        if node is None:
            logger.warning("[MindMap] node %s not found for dragging", node_id)
            return False
        await self._publish_graph_updated(source="drag")
        return True

    async def update_drag_position(self, node_id: str, x: float, y: float) -> bool:
        async with self._lock:
            updated = self.graph.set_node_position(node_id, x, y)
        if updated:
            await self._publish_graph_updated(source="drag")
        return updated

    async def end_drag(self, node_id: str) -> bool:
        async with self._lock:
            node = self.graph.update_node(node_id, is_dragging=False)
        if node is None:
            logger.warning("[MindMap] node %s not found to stop dragging", node_id)
            return False
        await self._publish_graph_updated(source="drag")
        return True

    async def select(self, node_id: Optional[str]) -> bool:
        """Exclusive selection; highlights direct neighbours and recedes the rest."""
        if node_id is None:
            await self.reset_focus()
            return True
        async with self._lock:
            if not self.graph.has_node(node_id):
                logger.warning("[MindMap] node %s not found for selection", node_id)
                return False
            if self.selected_node_id is not None:
                self.graph.update_node(self.selected_node_id, is_selected=False)
            self.selected_node_id = node_id
            neighbor_ids = set(self.graph.neighbor_ids(node_id))
            for other_id in self.graph.node_ids():
                if other_id == node_id:
                    self.graph.update_node(other_id, is_selected=True, scale=1.0, opacity=1.0)
                elif other_id in neighbor_ids:
                    self.graph.update_node(other_id, scale=HIGHLIGHT_SCALE, opacity=1.0)
                else:
                    self.graph.update_node(other_id, scale=RECEDE_SCALE, opacity=RECEDE_OPACITY)
        await self._publish_graph_updated(source="selection")
        return True

    async def focus_on_node(self, node_id: str) -> bool:
        return await self.select(node_id)

    async def reset_focus(self) -> None:
        async with self._lock:
            for node_id in self.graph.node_ids():
                self.graph.update_node(node_id, is_selected=False, scale=1.0, opacity=1.0)
            self.selected_node_id = None
        await self._publish_graph_updated(source="selection")

    def hover(self, node_id: Optional[str]) -> None:
        self.hovered_node_id = node_id

    # ------------------------------------------------------------------
    # Change handling
    # ------------------------------------------------------------------

    async def remove_item(self, item_id: str) -> bool:
        """Remove one node and its connections, then recompute clusters."""
        async with self._lock:
            if not self.graph.has_node(item_id):
                return False
            self.graph.remove_node(item_id)
            self.graph.clusters = build_clusters(self.graph)
            if self.selected_node_id == item_id:
                self.selected_node_id = None
            if self.hovered_node_id == item_id:
                self.hovered_node_id = None
        await self._publish_graph_updated(source="remove")
        return True

    async def handle_change(
        self,
        change: DataChange,
        items: Optional[Sequence[SourceItem]] = None,
    ) -> ChangeImpact:
        """Invalidate affected cache entries and update or regenerate the graph."""
        async with self._lock:
            impact = self.change_tracker.track(change, self.graph)
        await self._in_executor(self.cache.invalidate, impact.affected_node_ids)
        self.change_tracker.clear_pending()

        if change.type == ChangeType.DELETED_ITEM:
            for item_id in change.item_ids:
                await self.remove_item(item_id)
        if impact.full_regeneration and items is not None:
            self.start_generation(items)
        return impact
